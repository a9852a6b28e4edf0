"""Protocol interfaces for dependency injection.

Collaborators that sit outside the goal engine (clock, blob storage, AI
inference, event sink) are described here as ``@runtime_checkable``
Protocols, so tests and alternative deployments can swap them without
inheritance.

Example:
    >>> from goalbingo.interfaces import IObjectStorage
    >>> class MemoryStorage:
    ...     def __init__(self): self.blobs = {}
    ...     def put(self, data, content_type=None): ...
    ...     def get_url(self, handle): return f"mem://{handle}"
    ...     def delete(self, handle): self.blobs.pop(handle, None)
    >>> isinstance(MemoryStorage(), IObjectStorage)
    True
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol, runtime_checkable

from sqlmodel import Session

from goalbingo.models import DifficultyRanking, EventDraft, EventRow, GoalExtraction


@runtime_checkable
class Clock(Protocol):
    """Callable returning the current timezone-aware UTC time."""

    def __call__(self) -> datetime: ...


@runtime_checkable
class IObjectStorage(Protocol):
    """Blob storage for avatars and uploaded images, addressed by opaque handle."""

    def put(self, data: bytes, content_type: str | None = None) -> str:
        """Store a blob and return its handle."""
        ...

    def get_url(self, handle: str) -> str | None:
        """Resolve a handle to a URL, or None if the blob does not exist."""
        ...

    def delete(self, handle: str) -> None:
        """Delete a blob; unknown handles are ignored."""
        ...


@runtime_checkable
class IInferenceClient(Protocol):
    """External text/vision inference service.

    Implementations convert every failure into an "unavailable" result
    instead of raising.
    """

    async def rank_difficulty(self, goals: Sequence[str]) -> DifficultyRanking:
        """Rate the overall difficulty of a list of goals."""
        ...

    async def extract_goals_from_image(self, image_url: str) -> GoalExtraction:
        """Read a list of goals from an image."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        ...


@runtime_checkable
class IEventSink(Protocol):
    """Append/void target used by the outbox dispatcher."""

    def append(self, session: Session, draft: EventDraft, source_key: str | None = None) -> EventRow | None:
        """Append an event; returns None when the actor is not opted in."""
        ...

    def void(
        self, session: Session, goal_id: str, kinds: Sequence[str] | None = None
    ) -> EventRow | None:
        """Void the most recent non-voided event of a goal, optionally of given kinds."""
        ...


__all__ = ["Clock", "IObjectStorage", "IInferenceClient", "IEventSink"]
