"""Shared collaborators handed to every service.

Services receive one ``ServiceContext`` instead of a long constructor list.
It owns the clock, so tests can freeze time for every service at once.
"""

from dataclasses import dataclass, field
from datetime import datetime

from goalbingo.config import settings
from goalbingo.database import DatabaseManager
from goalbingo.errors import Unauthenticated
from goalbingo.events import EventLog
from goalbingo.interfaces import Clock, IObjectStorage
from goalbingo.logging import board_id_var, set_request_context
from goalbingo.outbox import DrainReport, Outbox, OutboxDispatcher
from goalbingo.utils import format_iso, utc_now


@dataclass
class ServiceContext:
    """Database, clock, storage and event plumbing used by services.

    Attributes:
        db: Initialized database manager
        storage: Object storage for avatars and images
        clock: Source of the current time
        dispatch_inline: Drain the outbox after each committed mutation
    """

    db: DatabaseManager
    storage: IObjectStorage
    clock: Clock = utc_now
    dispatch_inline: bool = field(default_factory=lambda: settings.dispatch_inline)

    def __post_init__(self) -> None:
        self.event_log = EventLog(clock=self._now)
        self.outbox = Outbox(clock=self._now)
        self.dispatcher = OutboxDispatcher(self.db, self.event_log, clock=self._now)

    def _now(self) -> datetime:
        return self.clock()

    def now(self) -> datetime:
        return self.clock()

    def now_iso(self) -> str:
        return format_iso(self.clock())  # type: ignore[return-value]

    def after_commit(self) -> DrainReport | None:
        """Drain pending events when running in inline dispatch mode."""
        if not self.dispatch_inline:
            return None
        return self.dispatcher.drain()

    def avatar_url(self, handle: str | None) -> str | None:
        return self.storage.get_url(handle) if handle else None


def require_user(user_id: str | None, operation: str | None = None) -> str:
    """Return the caller id or raise Unauthenticated.

    Also tags the logging context with the caller and operation and drops
    the board of the previous operation.
    """
    if not user_id:
        raise Unauthenticated("Not authenticated")
    board_id_var.set(None)
    set_request_context(user_id=user_id, operation=operation)
    return user_id


__all__ = ["ServiceContext", "require_user"]
