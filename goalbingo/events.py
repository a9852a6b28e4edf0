"""Append-only community event log.

Events are never deleted. When the fact behind an event stops being true
(a goal is un-completed) the event is *voided*: ``voided_at`` is set once
and every read path filters voided rows out.

Writes are gated by the public-feed opt-in: an actor who is not opted in
produces no rows at all.

Example:
    >>> log = EventLog(clock=utc_now)
    >>> with db.transaction() as session:
    ...     log.append(session, EventDraft(user_id="u1", kind="bingo", board_name="2025"))
    ...     log.void(session, goal_id="g1")
"""

from collections.abc import Callable, Sequence
from datetime import datetime

from sqlmodel import Session, col, select

from goalbingo.logging import logger
from goalbingo.metrics import events_appended_total, events_skipped_total, events_voided_total
from goalbingo.models import EventDraft, EventRow, FeedOptInRow
from goalbingo.utils import dump_metadata, format_iso, utc_now


class EventLog:
    """Append, void and read events inside a caller-provided session.

    Args:
        clock: Source of the current time (defaults to utc_now)
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self.clock = clock

    # =========================================================================
    # Writes
    # =========================================================================

    def is_opted_in(self, session: Session, user_id: str) -> bool:
        return session.get(FeedOptInRow, user_id) is not None

    def append(
        self,
        session: Session,
        draft: EventDraft,
        source_key: str | None = None,
    ) -> EventRow | None:
        """Append an event unless the actor is not opted in.

        Args:
            session: Open transaction
            draft: Event content
            source_key: Idempotency key (the outbox entry id); a second append
                with the same key returns the existing row

        Returns:
            The stored event, or None when the write was skipped
        """
        if source_key is not None:
            existing = session.exec(
                select(EventRow).where(EventRow.source_key == source_key)
            ).first()
            if existing is not None:
                logger.debug(f"Event for {source_key} already appended as #{existing.id}")
                return existing

        if not self.is_opted_in(session, draft.user_id):
            events_skipped_total.labels(kind=draft.kind).inc()
            logger.debug(f"Skipped {draft.kind} event: user {draft.user_id} not opted in")
            return None

        event = EventRow(
            user_id=draft.user_id,
            kind=str(draft.kind),
            board_id=draft.board_id,
            goal_id=draft.goal_id,
            board_name=draft.board_name,
            goal_text=draft.goal_text,
            metadata_json=dump_metadata(draft.metadata),
            community_id=draft.community_id,
            created_at=draft.created_at or format_iso(self.clock()),
            source_key=source_key,
        )
        session.add(event)
        session.flush()
        events_appended_total.labels(kind=event.kind).inc()
        logger.info(f"Appended {event.kind} event #{event.id}", user_id=draft.user_id)
        return event

    def void(
        self,
        session: Session,
        goal_id: str,
        kinds: Sequence[str] | None = None,
    ) -> EventRow | None:
        """Void the most recent non-voided event referencing a goal.

        Args:
            session: Open session of the caller's transaction
            goal_id: Goal whose event is retracted
            kinds: Only consider events of these kinds (any kind when None)

        Returns:
            The voided event, or None if there was nothing to void
        """
        stmt = (
            select(EventRow)
            .where(EventRow.goal_id == goal_id)
            .where(col(EventRow.voided_at).is_(None))
        )
        if kinds is not None:
            stmt = stmt.where(col(EventRow.kind).in_([str(kind) for kind in kinds]))
        event = session.exec(stmt.order_by(col(EventRow.id).desc()).limit(1)).first()
        if event is None:
            logger.debug(f"Nothing to void for goal {goal_id}")
            return None

        event.voided_at = format_iso(self.clock())
        session.add(event)
        session.flush()
        events_voided_total.labels(kind=event.kind).inc()
        logger.info(f"Voided {event.kind} event #{event.id}", goal_id=goal_id)
        return event

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, session: Session, event_id: int) -> EventRow | None:
        return session.get(EventRow, event_id)

    def recent(
        self,
        session: Session,
        limit: int,
        user_ids: Sequence[str] | None = None,
        board_ids: Sequence[str] | None = None,
        include_voided: bool = False,
        opted_in_only: bool = False,
    ) -> list[EventRow]:
        """Most recent events first, optionally restricted to actors or boards.

        An empty ``user_ids``/``board_ids`` sequence matches nothing.
        ``opted_in_only`` keeps events whose actor is opted in right now.
        """
        if (user_ids is not None and not user_ids) or (board_ids is not None and not board_ids):
            return []

        stmt = select(EventRow)
        if not include_voided:
            stmt = stmt.where(col(EventRow.voided_at).is_(None))
        if user_ids is not None:
            stmt = stmt.where(col(EventRow.user_id).in_(list(user_ids)))
        if board_ids is not None:
            stmt = stmt.where(col(EventRow.board_id).in_(list(board_ids)))
        if opted_in_only:
            stmt = stmt.where(col(EventRow.user_id).in_(select(FeedOptInRow.user_id)))
        stmt = stmt.order_by(col(EventRow.created_at).desc(), col(EventRow.id).desc()).limit(limit)
        return list(session.exec(stmt).all())

    def for_goal(self, session: Session, goal_id: str, include_voided: bool = True) -> list[EventRow]:
        """Every event of a goal in append order."""
        stmt = select(EventRow).where(EventRow.goal_id == goal_id)
        if not include_voided:
            stmt = stmt.where(col(EventRow.voided_at).is_(None))
        return list(session.exec(stmt.order_by(col(EventRow.id).asc())).all())


__all__ = ["EventLog"]
