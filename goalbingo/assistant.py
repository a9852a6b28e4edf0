"""AI helpers bound to boards and stored images.

AI failures never raise into callers: they come back as "unavailable"
results from the inference client.
"""

from goalbingo.context import ServiceContext, require_user
from goalbingo.errors import NotFound
from goalbingo.interfaces import IInferenceClient
from goalbingo.logging import logger
from goalbingo.models import BoardRow, DifficultyRanking, GoalExtraction, GoalRow
from goalbingo.repository import RepositoryFactory


class BoardAssistant:
    """Difficulty ranking and goal extraction for a user's boards.

    Args:
        ctx: Shared service collaborators
        client: Inference client
    """

    def __init__(self, ctx: ServiceContext, client: IInferenceClient):
        self.ctx = ctx
        self.client = client

    async def rank_board(self, user_id: str | None, board_id: str) -> DifficultyRanking:
        """Rank the difficulty of a board's filled-in goals and store the result.

        The difficulty label and summary are saved on the board only when the
        ranking is available.

        Raises:
            NotFound: Board missing or owned by someone else
        """
        user_id = require_user(user_id, "rank_board")
        with self.ctx.db.session() as session:
            repos = RepositoryFactory(session)
            board = repos.for_entity(BoardRow).get(board_id)
            if board is None or board.user_id != user_id:
                raise NotFound("Board not found")
            goals = repos.for_entity(GoalRow).find_by(
                board_id=board_id, is_free_space=False, order_by="position"
            )
            texts = [g.text for g in goals if g.text.strip()]

        result = await self.client.rank_difficulty(texts)
        if not result.available:
            return result

        with self.ctx.db.transaction() as session:
            board = session.get(BoardRow, board_id)
            if board is None:
                raise NotFound("Board not found")
            board.difficulty = result.difficulty
            board.difficulty_summary = result.ranking
            board.updated_at = self.ctx.now_iso()
            session.add(board)

        logger.info(f"Board {board_id} ranked {result.difficulty or 'unlabelled'}")
        return result

    async def extract_goals(self, user_id: str | None, image_handle: str) -> GoalExtraction:
        """Extract goal texts from a stored image."""
        require_user(user_id, "extract_goals")
        image_url = self.ctx.storage.get_url(image_handle)
        if not image_url:
            return GoalExtraction(success=False, error="Image not found.")
        return await self.client.extract_goals_from_image(image_url)


__all__ = ["BoardAssistant"]
