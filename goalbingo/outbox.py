"""Transactional outbox feeding the event log.

A goal mutation never writes events directly. It records an ``OutboxRow``
(append or void) in the same transaction as the goal change, so both
commit or neither does. ``OutboxDispatcher`` later drains pending rows in
id order, which keeps per-goal ordering: a void is always applied after
the append it retracts.

Example:
    >>> with db.transaction() as session:
    ...     goal.is_completed = True
    ...     session.add(goal)
    ...     outbox.enqueue_append(session, draft)
    >>> OutboxDispatcher(db, EventLog()).drain()
    DrainReport(processed=1, appended=1, skipped=0, voided=0, failed=0)
"""

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func
from sqlmodel import Session, col, select

from goalbingo.config import settings
from goalbingo.database import DatabaseManager
from goalbingo.interfaces import IEventSink
from goalbingo.logging import log_context, logger
from goalbingo.metrics import errors_total, outbox_entries_total, outbox_pending
from goalbingo.models import EventDraft, OutboxOperation, OutboxRow
from goalbingo.telemetry import get_tracer, traced
from goalbingo.utils import dump_metadata, format_iso, load_metadata, utc_now

tracer = get_tracer(__name__)


# =============================================================================
# Enqueueing
# =============================================================================


class Outbox:
    """Writes pending event operations inside the caller's transaction."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self.clock = clock

    def enqueue_append(self, session: Session, draft: EventDraft) -> OutboxRow:
        """Record an event to append once the transaction commits."""
        now = format_iso(self.clock())
        if draft.created_at is None:
            draft = draft.model_copy(update={"created_at": now})
        entry = OutboxRow(
            operation=OutboxOperation.APPEND.value,
            goal_id=draft.goal_id,
            payload_json=draft.model_dump_json(),
            created_at=now,
        )
        session.add(entry)
        session.flush()
        logger.debug(f"Queued {draft.kind} append as outbox #{entry.id}")
        return entry

    def enqueue_void(
        self,
        session: Session,
        goal_id: str,
        kinds: Sequence[str] | None = None,
    ) -> OutboxRow:
        """Record a void of the goal's most recent event, restricted to ``kinds`` if given."""
        entry = OutboxRow(
            operation=OutboxOperation.VOID.value,
            goal_id=goal_id,
            payload_json=dump_metadata({"kinds": [str(kind) for kind in kinds]}) if kinds else None,
            created_at=format_iso(self.clock()),
        )
        session.add(entry)
        session.flush()
        logger.debug(f"Queued void for goal {goal_id} as outbox #{entry.id}")
        return entry


# =============================================================================
# Dispatching
# =============================================================================


@dataclass
class DrainReport:
    """Counts from one drain pass."""

    processed: int = 0
    appended: int = 0
    skipped: int = 0
    voided: int = 0
    failed: int = 0


class OutboxDispatcher:
    """Applies pending outbox entries to the event log in FIFO order.

    Each entry is applied in its own transaction together with its
    ``processed_at`` marker. The first failure stops the pass so later
    entries (possibly for the same goal) are not applied out of order.

    Args:
        db: Initialized database manager
        sink: Event log receiving the operations
        clock: Source of the current time
    """

    def __init__(
        self,
        db: DatabaseManager,
        sink: IEventSink,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.sink = sink
        self.clock = clock

    def pending_count(self) -> int:
        with self.db.session() as session:
            return session.exec(
                select(func.count())
                .select_from(OutboxRow)
                .where(col(OutboxRow.processed_at).is_(None))
            ).one()

    def _pending_ids(self, limit: int) -> list[int]:
        with self.db.session() as session:
            rows = session.exec(
                select(OutboxRow.id)
                .where(col(OutboxRow.processed_at).is_(None))
                .order_by(col(OutboxRow.id).asc())
                .limit(limit)
            ).all()
        return [row for row in rows if row is not None]

    def _apply(self, session: Session, entry: OutboxRow, report: DrainReport) -> None:
        if entry.operation == OutboxOperation.APPEND:
            draft = EventDraft.model_validate_json(entry.payload_json or "{}")
            event = self.sink.append(session, draft, source_key=f"outbox:{entry.id}")
            if event is None:
                report.skipped += 1
            else:
                report.appended += 1
        elif entry.operation == OutboxOperation.VOID:
            kinds = load_metadata(entry.payload_json).get("kinds")
            if entry.goal_id and self.sink.void(session, entry.goal_id, kinds) is not None:
                report.voided += 1
        else:
            raise ValueError(f"Unknown outbox operation: {entry.operation}")

    def _record_failure(self, entry_id: int, error: Exception) -> None:
        with self.db.transaction() as session:
            entry = session.get(OutboxRow, entry_id)
            if entry is not None:
                entry.attempts += 1
                entry.last_error = str(error)[:500]
                session.add(entry)

    def drain(self, limit: int | None = None) -> DrainReport:
        """Process pending entries, oldest first.

        Args:
            limit: Maximum entries to process (defaults to settings.outbox_batch_size)

        Returns:
            Counts of what happened during this pass
        """
        limit = limit or settings.outbox_batch_size
        report = DrainReport()

        with (
            log_context(operation="outbox.drain"),
            traced(tracer, "outbox.drain", {"limit": limit}) as span,
        ):
            for entry_id in self._pending_ids(limit):
                try:
                    with self.db.transaction() as session:
                        entry = session.get(OutboxRow, entry_id)
                        if entry is None or entry.processed_at is not None:
                            continue
                        self._apply(session, entry, report)
                        entry.processed_at = format_iso(self.clock())
                        session.add(entry)
                except Exception as e:
                    report.failed += 1
                    errors_total.labels(error_type=type(e).__name__, component="outbox").inc()
                    outbox_entries_total.labels(operation="unknown", status="error").inc()
                    logger.opt(exception=e).error(f"Outbox entry #{entry_id} failed: {e}")
                    self._record_failure(entry_id, e)
                    break

                report.processed += 1
                outbox_entries_total.labels(operation=entry.operation, status="success").inc()

            span.set_attribute("processed", report.processed)
            span.set_attribute("failed", report.failed)

        outbox_pending.set(self.pending_count())
        if report.processed or report.failed:
            logger.debug(f"Outbox drain: {report}")
        return report

    async def run(
        self,
        poll_seconds: float | None = None,
        stop_event: asyncio.Event | None = None,
        max_cycles: int | None = None,
    ) -> int:
        """Drain continuously until stopped.

        Sleeps ``poll_seconds`` whenever a pass finds nothing to do or hits
        a failure.

        Args:
            poll_seconds: Idle sleep (defaults to settings.outbox_poll_seconds)
            stop_event: Set to stop the loop
            max_cycles: Stop after this many drain passes

        Returns:
            Total number of processed entries
        """
        poll_seconds = poll_seconds or settings.outbox_poll_seconds
        cycles = 0
        total = 0

        logger.info(f"🚚 Outbox worker started (poll every {poll_seconds}s)")
        while stop_event is None or not stop_event.is_set():
            report = await asyncio.to_thread(self.drain)
            total += report.processed
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            if report.processed == 0 or report.failed:
                await asyncio.sleep(poll_seconds)

        logger.info(f"Outbox worker stopped after {cycles} passes ({total} entries)")
        return total


__all__ = ["Outbox", "OutboxDispatcher", "DrainReport"]
