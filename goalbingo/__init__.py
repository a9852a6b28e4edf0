"""Goal Bingo - yearly goal boards with a community feed.

This package provides bingo-style goal boards (an odd-sized grid with a free
center), streak and progress goals, and an append-only event feed that friends,
communities and watchers can react to and comment on.

Example:
    >>> from goalbingo import GoalBingoApp
    >>>
    >>> app = GoalBingoApp().initialize()
    >>> board = app.boards.create_board("u1", "2025 Goals", goal_texts=["Run a 10k"])
    >>> goals = app.goals.list_goals("u1", board.id)
    >>> app.goals.toggle_complete("u1", goals[0].id)
    >>> app.close()
"""

__version__ = "0.1.0"

from goalbingo.app import GoalBingoApp
from goalbingo.config import settings
from goalbingo.errors import (
    ExternalServiceUnavailable,
    GoalBingoError,
    NotFound,
    PreconditionFailed,
    Unauthenticated,
    ValidationFailed,
)
from goalbingo.feed import CommunityScope, FeedAssembler, PublicScope, WatchScope
from goalbingo.goals import classify_completion
from goalbingo.models import EventKind, ReactionOutcome, ReactionType

__all__ = [
    "__version__",
    "GoalBingoApp",
    "settings",
    "GoalBingoError",
    "Unauthenticated",
    "NotFound",
    "PreconditionFailed",
    "ValidationFailed",
    "ExternalServiceUnavailable",
    "FeedAssembler",
    "PublicScope",
    "CommunityScope",
    "WatchScope",
    "classify_completion",
    "EventKind",
    "ReactionType",
    "ReactionOutcome",
]
