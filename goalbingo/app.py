"""Application container wiring every service to one database and clock.

Example:
    >>> app = GoalBingoApp(database_path=":memory:")
    >>> app.initialize()
    >>> board = app.boards.create_board("u1", "2025 Goals")
    >>> app.close()
"""

from pathlib import Path

from goalbingo.assistant import BoardAssistant
from goalbingo.boards import BoardService
from goalbingo.communities import CommunityService
from goalbingo.config import settings
from goalbingo.context import ServiceContext
from goalbingo.database import DatabaseManager
from goalbingo.feed import FeedAssembler
from goalbingo.goals import GoalService
from goalbingo.inference import AsyncInferenceClient
from goalbingo.interfaces import Clock, IInferenceClient, IObjectStorage
from goalbingo.logging import logger
from goalbingo.profiles import ProfileService
from goalbingo.social import SocialService
from goalbingo.storage import LocalObjectStorage
from goalbingo.utils import utc_now
from goalbingo.watched import WatchService


class GoalBingoApp:
    """Owns the database, collaborators and service instances.

    Args:
        database_path: SQLite path or ``:memory:`` (defaults to settings.database_path)
        storage: Object storage (defaults to LocalObjectStorage)
        clock: Source of the current time
        dispatch_inline: Drain events after each mutation (defaults to settings.dispatch_inline)
        inference_client: AI client (defaults to AsyncInferenceClient)
    """

    def __init__(
        self,
        database_path: Path | str | None = None,
        storage: IObjectStorage | None = None,
        clock: Clock = utc_now,
        dispatch_inline: bool | None = None,
        inference_client: IInferenceClient | None = None,
    ):
        self.db = DatabaseManager(database_path)
        self.ctx = ServiceContext(
            db=self.db,
            storage=storage or LocalObjectStorage(),
            clock=clock,
            dispatch_inline=settings.dispatch_inline if dispatch_inline is None else dispatch_inline,
        )
        self.inference = inference_client or AsyncInferenceClient()

        self.goals = GoalService(self.ctx)
        self.boards = BoardService(self.ctx)
        self.watched = WatchService(self.ctx)
        self.profiles = ProfileService(self.ctx)
        self.communities = CommunityService(self.ctx)
        self.social = SocialService(self.ctx)
        self.feed = FeedAssembler(self.ctx)
        self.assistant = BoardAssistant(self.ctx, self.inference)

    @property
    def dispatcher(self):
        return self.ctx.dispatcher

    def initialize(self) -> "GoalBingoApp":
        self.db.initialize()
        logger.debug(f"GoalBingo ready (inline dispatch: {self.ctx.dispatch_inline})")
        return self

    def close(self) -> None:
        self.db.close()

    async def aclose(self) -> None:
        """Close the inference client and the database."""
        await self.inference.close()
        self.close()


__all__ = ["GoalBingoApp"]
