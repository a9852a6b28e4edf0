"""Pure functions over a board's goal set.

Everything here is side-effect free and works on any objects exposing
``position``, ``is_completed`` and ``is_free_space`` (``GoalRow`` or the
lightweight ``GoalCell`` snapshot). That makes it safe to evaluate a
hypothetical "one goal flipped" state before anything is written.

Example:
    >>> cells = [GoalCell(id=str(p), position=p, is_completed=p < 5) for p in range(25)]
    >>> has_bingo(cells, 5)
    True
    >>> completion_percent(cells)
    20
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Protocol

from goalbingo.models import BoardStats


class GoalLike(Protocol):
    position: int
    is_completed: bool
    is_free_space: bool


@dataclass(frozen=True)
class GoalCell:
    """Immutable snapshot of the grid-relevant fields of a goal."""

    id: str
    position: int
    is_completed: bool
    is_free_space: bool = False


def free_space_position(size: int) -> int:
    """Position of the free space (the grid's center for odd sizes)."""
    return (size * size) // 2


@lru_cache(maxsize=16)
def winning_lines(size: int) -> tuple[tuple[int, ...], ...]:
    """Every row, column and both diagonals of a size x size grid."""
    rows = [tuple(r * size + c for c in range(size)) for r in range(size)]
    cols = [tuple(r * size + c for r in range(size)) for c in range(size)]
    diagonal = tuple(i * size + i for i in range(size))
    anti_diagonal = tuple(i * size + (size - 1 - i) for i in range(size))
    return tuple(rows + cols + [diagonal, anti_diagonal])


def completed_positions(goals: Iterable[GoalLike]) -> frozenset[int]:
    return frozenset(g.position for g in goals if g.is_completed)


def has_bingo(goals: Iterable[GoalLike], size: int) -> bool:
    """Check whether any full row, column or diagonal is completed.

    Args:
        goals: Goal set of one board
        size: Grid dimension

    Returns:
        True if at least one winning line is fully completed
    """
    if size <= 0:
        return False
    done = completed_positions(goals)
    return any(done.issuperset(line) for line in winning_lines(size))


def completed_lines(goals: Iterable[GoalLike], size: int) -> list[tuple[int, ...]]:
    """All winning lines that are fully completed."""
    done = completed_positions(goals)
    return [line for line in winning_lines(size) if done.issuperset(line)]


def completion_percent(goals: Iterable[GoalLike]) -> int:
    """Percent of non-free-space goals completed, rounded to nearest integer.

    Returns 0 when the board has no eligible goals.
    """
    eligible = [g for g in goals if not g.is_free_space]
    if not eligible:
        return 0
    completed = sum(1 for g in eligible if g.is_completed)
    return round(completed / len(eligible) * 100)


def is_board_complete(goals: Iterable[GoalLike]) -> bool:
    """True when every goal (free space included) is completed."""
    goals = list(goals)
    return bool(goals) and all(g.is_completed for g in goals)


def board_stats(goals: Sequence[GoalLike]) -> BoardStats:
    """Summarize a goal set for board listings."""
    return BoardStats(
        total_goals=len(goals),
        completed_goals=sum(1 for g in goals if g.is_completed),
        completion_percent=completion_percent(goals),
    )


def snapshot(goals: Iterable[object]) -> list[GoalCell]:
    """Copy the grid-relevant fields of stored goals into immutable cells."""
    return [
        GoalCell(
            id=g.id,  # type: ignore[attr-defined]
            position=g.position,  # type: ignore[attr-defined]
            is_completed=g.is_completed,  # type: ignore[attr-defined]
            is_free_space=g.is_free_space,  # type: ignore[attr-defined]
        )
        for g in goals
    ]


def with_goal_completed(cells: Sequence[GoalCell], goal_id: str, completed: bool) -> list[GoalCell]:
    """Return a copy of ``cells`` with one goal's completion flag replaced."""
    return [replace(c, is_completed=completed) if c.id == goal_id else c for c in cells]


__all__ = [
    "GoalCell",
    "free_space_position",
    "winning_lines",
    "completed_positions",
    "has_bingo",
    "completed_lines",
    "completion_percent",
    "is_board_complete",
    "board_stats",
    "snapshot",
    "with_goal_completed",
]
