"""Watch list: explicit subscriptions to other users' boards."""

from sqlmodel import col, select

from goalbingo.boards import summarize_boards
from goalbingo.context import ServiceContext, require_user
from goalbingo.errors import NotFound, PreconditionFailed
from goalbingo.logging import logger
from goalbingo.models import BoardRow, BoardSummary, WatchedBoardRow
from goalbingo.repository import Repository


class WatchService:
    """Add, remove and list watched boards."""

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx

    def watch_board(self, user_id: str | None, board_id: str) -> bool:
        """Start watching a board.

        Returns:
            True if a watch was added, False if the caller already watched it

        Raises:
            NotFound: Board missing
            PreconditionFailed: The board belongs to the caller
        """
        user_id = require_user(user_id, "watch_board")
        with self.ctx.db.transaction() as session:
            board = session.get(BoardRow, board_id)
            if board is None:
                raise NotFound("Board not found")
            if board.user_id == user_id:
                raise PreconditionFailed("Cannot watch your own board")

            watches = Repository(session, WatchedBoardRow)
            if watches.exists(user_id=user_id, board_id=board_id):
                return False
            watches.add(
                WatchedBoardRow(user_id=user_id, board_id=board_id, created_at=self.ctx.now_iso())
            )
        logger.info(f"{user_id} is now watching board {board_id}")
        return True

    def unwatch_board(self, user_id: str | None, board_id: str) -> bool:
        """Stop watching a board; returns whether a watch existed."""
        user_id = require_user(user_id, "unwatch_board")
        with self.ctx.db.transaction() as session:
            removed = Repository(session, WatchedBoardRow).delete_by(user_id=user_id, board_id=board_id)
        return removed > 0

    def is_watching(self, user_id: str | None, board_id: str) -> bool:
        if not user_id:
            return False
        with self.ctx.db.session() as session:
            return Repository(session, WatchedBoardRow).exists(user_id=user_id, board_id=board_id)

    def watched_board_ids(self, user_id: str) -> list[str]:
        with self.ctx.db.session() as session:
            return [w.board_id for w in Repository(session, WatchedBoardRow).find_by(user_id=user_id)]

    def get_watched_boards(self, user_id: str | None) -> list[BoardSummary]:
        """Watched boards, most recently watched first, with stats and owner names."""
        if not user_id:
            return []
        with self.ctx.db.session() as session:
            boards = session.exec(
                select(BoardRow)
                .join(WatchedBoardRow, col(WatchedBoardRow.board_id) == col(BoardRow.id))
                .where(WatchedBoardRow.user_id == user_id)
                .order_by(col(WatchedBoardRow.created_at).desc(), col(WatchedBoardRow.id).desc())
            ).all()
            return summarize_boards(session, self.ctx, boards, with_owner=True)


__all__ = ["WatchService"]
