"""Goal state machine.

Every goal is exactly one of plain, streak or progress, and is either
Incomplete or Complete. Each mutation runs in one transaction together
with the outbox entry for the event it causes, so a failure leaves both
the goal and the event log untouched.

Event rules:
    - Completing a goal emits exactly one event, chosen by
      ``classify_completion``: ``board_completed`` > ``bingo`` > ``goal_completed``.
    - Un-completing a goal voids its most recent live completion event
      (``goal_completed``, ``bingo`` or ``board_completed``).
    - Enabling a streak emits ``streak_started``; resetting one voids a live
      completion and emits ``streak_reset`` with the length of the broken streak.
    - A progress counter crossing its target completes the goal and emits
      ``goal_completed`` with the counter values.
    - Disabling a streak or progress goal reverts it to a plain goal silently.
"""

import math
from collections.abc import Sequence
from datetime import datetime

from sqlmodel import Session, col, select

from goalbingo.config import settings
from goalbingo.context import ServiceContext, require_user
from goalbingo.errors import NotFound, PreconditionFailed, ValidationFailed
from goalbingo.grid import GoalCell, has_bingo, is_board_complete, snapshot, with_goal_completed
from goalbingo.logging import logger, set_request_context
from goalbingo.metrics import errors_total, goal_transitions_total
from goalbingo.models import COMPLETION_KINDS, BoardRow, EventDraft, EventKind, GoalRow
from goalbingo.utils import format_iso, parse_datetime, whole_days_between


# =============================================================================
# Pure Classification
# =============================================================================


def classify_completion(
    pre_goals: Sequence[GoalCell],
    post_goals: Sequence[GoalCell],
    changed_goal_id: str,
    size: int | None = None,
) -> EventKind | None:
    """Choose the single event kind for a completing transition.

    Args:
        pre_goals: Board goal set before the change
        post_goals: Board goal set after the change
        changed_goal_id: Goal whose completion flag flipped
        size: Grid dimension (derived from the goal count when omitted)

    Returns:
        ``board_completed`` if every goal is complete afterwards, else ``bingo``
        if a first BINGO line appeared, else ``goal_completed``. None when
        ``changed_goal_id`` did not go from incomplete to complete.

    Example:
        >>> post = with_goal_completed(pre, "g4", True)
        >>> classify_completion(pre, post, "g4")
        <EventKind.BINGO: 'bingo'>
    """
    before = next((g for g in pre_goals if g.id == changed_goal_id), None)
    after = next((g for g in post_goals if g.id == changed_goal_id), None)
    if before is None or after is None or before.is_completed or not after.is_completed:
        return None

    if size is None:
        size = math.isqrt(len(post_goals))

    if is_board_complete(post_goals):
        return EventKind.BOARD_COMPLETED
    if has_bingo(post_goals, size) and not has_bingo(pre_goals, size):
        return EventKind.BINGO
    return EventKind.GOAL_COMPLETED


def streak_days(goal: GoalRow, now: datetime) -> int:
    """Whole days elapsed in the goal's current streak (0 for non-streak goals)."""
    if not goal.is_streak_goal or not goal.streak_start_date:
        return 0
    return whole_days_between(goal.streak_start_date, now)


def streak_target_reached(goal: GoalRow, now: datetime) -> bool:
    """True once a streak has lasted at least its target number of days."""
    if not goal.is_streak_goal or not goal.streak_target_days:
        return False
    return streak_days(goal, now) >= goal.streak_target_days


# =============================================================================
# Goal Service
# =============================================================================


class GoalService:
    """Mutations and reads of individual goals.

    Args:
        ctx: Shared service collaborators
    """

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx

    # -------------------------------------------------------------------------
    # Loading helpers
    # -------------------------------------------------------------------------

    def _owned_goal(self, session: Session, user_id: str, goal_id: str) -> GoalRow:
        goal = session.get(GoalRow, goal_id)
        if goal is None or goal.user_id != user_id:
            raise NotFound("Goal not found")
        set_request_context(board_id=goal.board_id)
        return goal

    def _board(self, session: Session, goal: GoalRow) -> BoardRow:
        board = session.get(BoardRow, goal.board_id)
        if board is None:
            raise NotFound("Board not found")
        return board

    def _board_goals(self, session: Session, board_id: str) -> list[GoalRow]:
        return list(
            session.exec(
                select(GoalRow).where(GoalRow.board_id == board_id).order_by(col(GoalRow.position))
            ).all()
        )

    @staticmethod
    def _reject_free_space(goal: GoalRow, action: str) -> None:
        if goal.is_free_space:
            errors_total.labels(error_type=PreconditionFailed.code, component="goals").inc()
            raise PreconditionFailed(f"Cannot {action} the free space")

    def _draft(
        self,
        goal: GoalRow,
        board: BoardRow,
        kind: EventKind,
        metadata: dict | None = None,
        with_text: bool = True,
    ) -> EventDraft:
        return EventDraft(
            user_id=goal.user_id,
            kind=kind,
            board_id=board.id,
            goal_id=goal.id,
            board_name=board.name,
            goal_text=(goal.text or None) if with_text else None,
            metadata=metadata or {},
            created_at=self.ctx.now_iso(),
        )

    def _touch(self, session: Session, goal: GoalRow) -> None:
        goal.updated_at = self.ctx.now_iso()
        session.add(goal)
        session.flush()

    # -------------------------------------------------------------------------
    # Completion core
    # -------------------------------------------------------------------------

    def _mark_complete(self, session: Session, goal: GoalRow, board: BoardRow) -> EventKind:
        cells = snapshot(self._board_goals(session, board.id))
        post = with_goal_completed(cells, goal.id, True)
        kind = classify_completion(cells, post, goal.id, board.size) or EventKind.GOAL_COMPLETED

        goal.is_completed = True
        goal.completed_at = self.ctx.now_iso()
        self._touch(session, goal)
        self.ctx.outbox.enqueue_append(
            session,
            self._draft(goal, board, kind, with_text=kind == EventKind.GOAL_COMPLETED),
        )
        goal_transitions_total.labels(transition="completed").inc()
        logger.info(f"Goal {goal.id} completed -> {kind}", board_id=board.id)
        return kind

    def _mark_incomplete(self, session: Session, goal: GoalRow) -> None:
        goal.is_completed = False
        goal.completed_at = None
        self._touch(session, goal)
        self.ctx.outbox.enqueue_void(session, goal.id, COMPLETION_KINDS)
        goal_transitions_total.labels(transition="uncompleted").inc()
        logger.info(f"Goal {goal.id} un-completed", board_id=goal.board_id)

    def _apply_completed(self, session: Session, goal: GoalRow, completed: bool) -> EventKind | None:
        self._reject_free_space(goal, "change completion of")
        if goal.is_completed == completed:
            return None
        if completed:
            return self._mark_complete(session, goal, self._board(session, goal))
        self._mark_incomplete(session, goal)
        return None

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    def get_goal(self, user_id: str | None, goal_id: str) -> GoalRow:
        user_id = require_user(user_id)
        with self.ctx.db.session() as session:
            return self._owned_goal(session, user_id, goal_id)

    def list_goals(self, user_id: str | None, board_id: str) -> list[GoalRow]:
        """Goals of one of the caller's boards ordered by position."""
        user_id = require_user(user_id)
        with self.ctx.db.session() as session:
            board = session.get(BoardRow, board_id)
            if board is None or board.user_id != user_id:
                raise NotFound("Board not found")
            return self._board_goals(session, board_id)

    def set_text(self, user_id: str | None, goal_id: str, text: str) -> GoalRow:
        """Replace a goal's text; no event."""
        user_id = require_user(user_id, "set_text")
        text = (text or "").strip()
        if len(text) > settings.max_goal_text_length:
            raise ValidationFailed(
                f"Goal text must be at most {settings.max_goal_text_length} characters"
            )
        with self.ctx.db.transaction() as session:
            goal = self._owned_goal(session, user_id, goal_id)
            self._reject_free_space(goal, "edit")
            goal.text = text
            self._touch(session, goal)
        return goal

    def set_completed(self, user_id: str | None, goal_id: str, completed: bool) -> GoalRow:
        """Mark a goal complete or incomplete.

        Completing records ``completed_at`` and queues exactly one event;
        un-completing queues a void of its latest completion event. Requesting the
        current state is a no-op.

        Raises:
            Unauthenticated: No caller
            NotFound: Goal missing or owned by someone else
            PreconditionFailed: Goal is the free space
        """
        user_id = require_user(user_id, "set_completed")
        with self.ctx.db.transaction() as session:
            goal = self._owned_goal(session, user_id, goal_id)
            self._apply_completed(session, goal, completed)
        self.ctx.after_commit()
        return goal

    def toggle_complete(self, user_id: str | None, goal_id: str) -> GoalRow:
        """Flip a goal's completion state."""
        user_id = require_user(user_id, "toggle_complete")
        with self.ctx.db.transaction() as session:
            goal = self._owned_goal(session, user_id, goal_id)
            self._apply_completed(session, goal, not goal.is_completed)
        self.ctx.after_commit()
        return goal

    def set_streak(
        self,
        user_id: str | None,
        goal_id: str,
        enable: bool,
        target_days: int | None = None,
        start_date: datetime | str | None = None,
    ) -> GoalRow:
        """Turn a goal into a streak goal, adjust it, or revert it to plain.

        Enabling on a goal that was not a streak goal starts the streak at
        ``start_date`` (default now), clears any progress sub-state and queues
        ``streak_started``. Adjusting an existing streak emits nothing.
        """
        user_id = require_user(user_id, "set_streak")
        if target_days is not None and target_days < 1:
            raise ValidationFailed("Streak target must be at least 1 day")
        start = parse_datetime(start_date) if start_date is not None else None

        with self.ctx.db.transaction() as session:
            goal = self._owned_goal(session, user_id, goal_id)
            self._reject_free_space(goal, "make a streak of")

            if not enable:
                if goal.is_streak_goal:
                    self._clear_streak(goal)
                    self._touch(session, goal)
                    logger.info(f"Goal {goal.id} is no longer a streak goal")
            elif goal.is_streak_goal:
                if target_days is not None:
                    goal.streak_target_days = target_days
                if start is not None:
                    goal.streak_start_date = format_iso(start)
                self._touch(session, goal)
            else:
                self._clear_progress(goal)
                goal.is_streak_goal = True
                goal.streak_target_days = (
                    target_days or goal.streak_target_days or settings.default_streak_target_days
                )
                goal.streak_start_date = format_iso(start or self.ctx.now())
                self._touch(session, goal)
                board = self._board(session, goal)
                self.ctx.outbox.enqueue_append(
                    session,
                    self._draft(
                        goal,
                        board,
                        EventKind.STREAK_STARTED,
                        {"targetDays": goal.streak_target_days},
                    ),
                )
                goal_transitions_total.labels(transition="streak_started").inc()
                logger.info(f"Streak started on goal {goal.id} ({goal.streak_target_days} days)")
        self.ctx.after_commit()
        return goal

    def reset_streak(self, user_id: str | None, goal_id: str) -> GoalRow:
        """Break a streak: restart it now, clear completion, queue ``streak_reset``.

        A completed streak goal also has its completion event voided, so the
        goal never carries two live completions once it is completed again.

        Raises:
            PreconditionFailed: Goal is not a streak goal
        """
        user_id = require_user(user_id, "reset_streak")
        with self.ctx.db.transaction() as session:
            goal = self._owned_goal(session, user_id, goal_id)
            self._reject_free_space(goal, "reset")
            if not goal.is_streak_goal:
                raise PreconditionFailed("Not a streak goal")

            now = self.ctx.now()
            previous_days = streak_days(goal, now)
            goal.streak_start_date = format_iso(now)
            if goal.is_completed:
                self.ctx.outbox.enqueue_void(session, goal.id, COMPLETION_KINDS)
            goal.is_completed = False
            goal.completed_at = None
            self._touch(session, goal)

            board = self._board(session, goal)
            self.ctx.outbox.enqueue_append(
                session,
                self._draft(goal, board, EventKind.STREAK_RESET, {"previousDays": previous_days}),
            )
            goal_transitions_total.labels(transition="streak_reset").inc()
            logger.info(f"Streak on goal {goal.id} reset after {previous_days} days")
        self.ctx.after_commit()
        return goal

    def set_progress(
        self,
        user_id: str | None,
        goal_id: str,
        enable: bool,
        target: int | None = None,
        current: int | None = None,
    ) -> GoalRow:
        """Turn a goal into a progress goal, adjust it, or revert it to plain.

        Enabling on a non-progress goal starts the counter at ``current``
        (default 0) and emits nothing. Adjusting an existing progress goal so
        that the counter crosses its target completes it like
        ``increment_progress``.
        """
        user_id = require_user(user_id, "set_progress")
        if target is not None and target < 1:
            raise ValidationFailed("Progress target must be at least 1")
        if current is not None and current < 0:
            raise ValidationFailed("Progress count cannot be negative")

        with self.ctx.db.transaction() as session:
            goal = self._owned_goal(session, user_id, goal_id)
            self._reject_free_space(goal, "track progress on")

            if not enable:
                if goal.is_progress_goal:
                    self._clear_progress(goal)
                    self._touch(session, goal)
                    logger.info(f"Goal {goal.id} is no longer a progress goal")
            elif not goal.is_progress_goal:
                self._clear_streak(goal)
                goal.is_progress_goal = True
                goal.progress_target = target or goal.progress_target or 1
                goal.progress_current = current if current is not None else 0
                self._touch(session, goal)
            else:
                old_current = goal.progress_current or 0
                new_target = target or goal.progress_target or 1
                new_current = current if current is not None else old_current
                goal.progress_target = new_target
                self._apply_progress(session, goal, old_current, new_current)
        self.ctx.after_commit()
        return goal

    def increment_progress(self, user_id: str | None, goal_id: str, delta: int = 1) -> GoalRow:
        """Move a progress counter by ``delta`` (never below zero).

        Crossing from below the target to at/above it completes the goal and
        queues ``goal_completed`` with ``progressTarget``/``progressCurrent``.
        Going back down never reopens the goal.

        Raises:
            PreconditionFailed: Goal is not a progress goal
        """
        user_id = require_user(user_id, "increment_progress")
        with self.ctx.db.transaction() as session:
            goal = self._owned_goal(session, user_id, goal_id)
            self._reject_free_space(goal, "track progress on")
            if not goal.is_progress_goal:
                raise PreconditionFailed("Not a progress goal")

            old_current = goal.progress_current or 0
            self._apply_progress(session, goal, old_current, max(0, old_current + delta))
        self.ctx.after_commit()
        return goal

    # -------------------------------------------------------------------------
    # Sub-state helpers
    # -------------------------------------------------------------------------

    def _apply_progress(
        self,
        session: Session,
        goal: GoalRow,
        old_current: int,
        new_current: int,
    ) -> None:
        target = goal.progress_target or 1
        goal.progress_current = new_current
        crossed = old_current < target <= new_current

        if crossed and not goal.is_completed:
            board = self._board(session, goal)
            goal.is_completed = True
            goal.completed_at = self.ctx.now_iso()
            self._touch(session, goal)
            self.ctx.outbox.enqueue_append(
                session,
                self._draft(
                    goal,
                    board,
                    EventKind.GOAL_COMPLETED,
                    {"progressTarget": target, "progressCurrent": new_current},
                ),
            )
            goal_transitions_total.labels(transition="progress_completed").inc()
            logger.info(f"Progress goal {goal.id} reached {new_current}/{target}")
        else:
            self._touch(session, goal)

    @staticmethod
    def _clear_streak(goal: GoalRow) -> None:
        goal.is_streak_goal = False
        goal.streak_target_days = None
        goal.streak_start_date = None

    @staticmethod
    def _clear_progress(goal: GoalRow) -> None:
        goal.is_progress_goal = False
        goal.progress_target = None
        goal.progress_current = None


__all__ = ["GoalService", "classify_completion", "streak_days", "streak_target_reached"]
