"""Tests for the event log, the outbox and its dispatcher."""

import asyncio
from unittest.mock import patch

import pytest

from goalbingo.events import EventLog
from goalbingo.models import COMPLETION_KINDS, EventDraft, EventKind, OutboxRow
from goalbingo.outbox import DrainReport


class TestEventLog:
    """Tests for appending, voiding and reading events."""

    def test_append_and_read(self, app, make_user):
        """Test an opted-in user's event is stored with its metadata."""
        user = make_user()
        with app.db.transaction() as session:
            event = app.ctx.event_log.append(
                session,
                EventDraft(
                    user_id=user,
                    kind=EventKind.STREAK_STARTED,
                    board_name="Habits",
                    metadata={"targetDays": 7},
                ),
            )
        assert event is not None
        assert event.id is not None
        assert event.kind == "streak_started"
        assert event.metadata_json == '{"targetDays":7}'
        assert event.created_at == "2025-01-15T12:00:00.000000Z"

    def test_append_skips_users_not_opted_in(self, app, make_user):
        """Test appends for users outside the public feed are silent no-ops."""
        user = make_user(opted_in=False)
        with app.db.transaction() as session:
            event = app.ctx.event_log.append(
                session, EventDraft(user_id=user, kind=EventKind.BINGO, board_name="B")
            )
            assert event is None
            assert app.ctx.event_log.recent(session, 10) == []

    def test_append_is_idempotent_by_source_key(self, app, make_user):
        """Test replaying an outbox entry returns the stored event."""
        user = make_user()
        draft = EventDraft(user_id=user, kind=EventKind.BINGO, board_name="B")
        with app.db.transaction() as session:
            first = app.ctx.event_log.append(session, draft, source_key="outbox:99")
            second = app.ctx.event_log.append(session, draft, source_key="outbox:99")
            assert first.id == second.id
            assert len(app.ctx.event_log.recent(session, 10)) == 1

    def test_void_targets_most_recent_live_event(self, app, make_user):
        """Test voiding walks back through a goal's events newest first."""
        user = make_user()
        log = app.ctx.event_log
        with app.db.transaction() as session:
            older = log.append(
                session, EventDraft(user_id=user, kind=EventKind.STREAK_STARTED, board_name="B", goal_id="g1")
            )
            newer = log.append(
                session, EventDraft(user_id=user, kind=EventKind.GOAL_COMPLETED, board_name="B", goal_id="g1")
            )
            assert log.void(session, "g1").id == newer.id
            assert log.void(session, "g1").id == older.id
            assert log.void(session, "g1") is None
            assert [e.id for e in log.for_goal(session, "g1")] == [older.id, newer.id]
            assert log.for_goal(session, "g1", include_voided=False) == []

    def test_void_restricted_to_kinds(self, app, make_user):
        """Test a kind filter skips newer events of other kinds."""
        user = make_user()
        log = app.ctx.event_log
        with app.db.transaction() as session:
            completed = log.append(
                session, EventDraft(user_id=user, kind=EventKind.GOAL_COMPLETED, board_name="B", goal_id="g1")
            )
            started = log.append(
                session, EventDraft(user_id=user, kind=EventKind.STREAK_STARTED, board_name="B", goal_id="g1")
            )

            assert log.void(session, "g1", COMPLETION_KINDS).id == completed.id
            assert log.void(session, "g1", COMPLETION_KINDS) is None
            assert started.voided_at is None

    def test_void_unknown_goal_is_noop(self, app):
        """Test voiding a goal without events does nothing."""
        with app.db.transaction() as session:
            assert app.ctx.event_log.void(session, "missing") is None

    def test_recent_filters(self, app, make_user):
        """Test actor, board and opt-in filters."""
        alice, bob = make_user(), make_user()
        log = app.ctx.event_log
        with app.db.transaction() as session:
            log.append(session, EventDraft(user_id=alice, kind=EventKind.BINGO, board_name="A", board_id="ba"))
            log.append(session, EventDraft(user_id=bob, kind=EventKind.BINGO, board_name="B", board_id="bb"))

        app.communities.toggle_feed_opt_in(bob)

        with app.db.session() as session:
            assert [e.user_id for e in log.recent(session, 10, user_ids=[alice])] == [alice]
            assert [e.board_id for e in log.recent(session, 10, board_ids=["bb"])] == ["bb"]
            assert log.recent(session, 10, user_ids=[]) == []
            assert log.recent(session, 10, board_ids=[]) == []
            assert [e.user_id for e in log.recent(session, 10, opted_in_only=True)] == [alice]

    def test_recent_orders_newest_first(self, app, clock, make_user):
        """Test events come back newest first, ties broken by append order."""
        user = make_user()
        log = EventLog(clock=clock)
        with app.db.transaction() as session:
            first = log.append(session, EventDraft(user_id=user, kind=EventKind.BINGO, board_name="1"))
            second = log.append(session, EventDraft(user_id=user, kind=EventKind.BINGO, board_name="2"))
            clock.advance(seconds=1)
            third = log.append(session, EventDraft(user_id=user, kind=EventKind.BINGO, board_name="3"))
            assert [e.id for e in log.recent(session, 10)] == [third.id, second.id, first.id]
            assert len(log.recent(session, 2)) == 2


class TestOutboxDispatch:
    """Tests for deferred event dispatch."""

    def test_events_wait_until_drained(self, deferred_app, make_user, all_events):
        """Test nothing reaches the log before a drain."""
        owner = make_user(target=deferred_app)
        board = deferred_app.boards.create_board(owner, "Later", size=3)
        goal = deferred_app.goals.list_goals(owner, board.id)[0]
        deferred_app.goals.set_completed(owner, goal.id, True)

        assert all_events(deferred_app) == []
        assert deferred_app.dispatcher.pending_count() == 2

        report = deferred_app.dispatcher.drain()

        assert report == DrainReport(processed=2, appended=2)
        assert [e.kind for e in all_events(deferred_app)] == ["board_created", "goal_completed"]
        assert deferred_app.dispatcher.pending_count() == 0

    def test_void_is_applied_after_its_append(self, deferred_app, make_user, all_events):
        """Test a completion undone before dispatch ends up voided."""
        owner = make_user(target=deferred_app)
        board = deferred_app.boards.create_board(owner, "Later", size=3)
        goal = deferred_app.goals.list_goals(owner, board.id)[0]
        deferred_app.goals.set_completed(owner, goal.id, True)
        deferred_app.goals.set_completed(owner, goal.id, False)

        report = deferred_app.dispatcher.drain()

        assert report.appended == 2
        assert report.voided == 1
        events = all_events(deferred_app)
        assert events[-1].kind == EventKind.GOAL_COMPLETED
        assert events[-1].voided_at is not None

    def test_queued_void_keeps_its_kinds(self, deferred_app, make_user, all_events):
        """Test a queued void skips a later streak event when dispatched."""
        owner = make_user(target=deferred_app)
        board = deferred_app.boards.create_board(owner, "Later", size=3)
        goal = deferred_app.goals.list_goals(owner, board.id)[0]
        deferred_app.goals.set_completed(owner, goal.id, True)
        deferred_app.goals.set_streak(owner, goal.id, True, target_days=30)
        deferred_app.goals.set_completed(owner, goal.id, False)

        deferred_app.dispatcher.drain()

        events = {e.kind: e for e in all_events(deferred_app)}
        assert events["goal_completed"].voided_at is not None
        assert events["streak_started"].voided_at is None

    def test_drain_respects_limit(self, deferred_app, make_user):
        """Test a drain processes at most the given number of entries."""
        owner = make_user(target=deferred_app)
        for name in ("One", "Two", "Three"):
            deferred_app.boards.create_board(owner, name, size=3)

        assert deferred_app.dispatcher.drain(limit=2).processed == 2
        assert deferred_app.dispatcher.pending_count() == 1

    def test_failure_stops_drain_and_is_recorded(self, deferred_app, make_user):
        """Test a failing entry blocks later ones and keeps its error."""
        owner = make_user(target=deferred_app)
        deferred_app.boards.create_board(owner, "One", size=3)
        deferred_app.boards.create_board(owner, "Two", size=3)

        with patch.object(
            deferred_app.ctx.event_log, "append", side_effect=RuntimeError("disk full")
        ) as patched:
            report = deferred_app.dispatcher.drain()

        assert report.failed == 1
        assert report.processed == 0
        assert patched.call_count == 1
        with deferred_app.db.session() as session:
            entry = session.get(OutboxRow, 1)
            assert entry.attempts == 1
            assert entry.last_error == "disk full"
            assert entry.processed_at is None

        assert deferred_app.dispatcher.drain().processed == 2

    @pytest.mark.asyncio
    async def test_worker_loop(self, deferred_app, make_user, all_events):
        """Test the async worker drains pending entries."""
        owner = make_user(target=deferred_app)
        deferred_app.boards.create_board(owner, "Async", size=3)

        total = await deferred_app.dispatcher.run(poll_seconds=0.01, max_cycles=2)

        assert total == 1
        assert [e.kind for e in all_events(deferred_app)] == ["board_created"]

    @pytest.mark.asyncio
    async def test_worker_stops_on_event(self, deferred_app):
        """Test setting the stop event ends the loop."""
        stop = asyncio.Event()
        stop.set()

        assert await deferred_app.dispatcher.run(poll_seconds=0.01, stop_event=stop) == 0
