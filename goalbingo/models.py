"""Data models for Goal Bingo.

Two layers live here:

1. SQLModel tables (``*Row``) persisted in SQLite.
2. Pydantic read models returned by services (feed items, board summaries,
   AI results). These never touch the database directly.

All timestamps are fixed-precision ISO8601 UTC strings (see
``goalbingo.utils.format_iso``).
"""

from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field as PydanticField
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from goalbingo.utils import load_metadata


# =============================================================================
# Enumerations
# =============================================================================


class EventKind(StrEnum):
    """Kinds of community feed events."""

    BOARD_CREATED = "board_created"
    GOAL_COMPLETED = "goal_completed"
    BOARD_COMPLETED = "board_completed"
    STREAK_STARTED = "streak_started"
    STREAK_RESET = "streak_reset"
    STREAK_MILESTONE = "streak_milestone"  # reserved, never emitted
    BINGO = "bingo"
    USER_JOINED = "user_joined"  # reserved, never emitted
    PROGRESS_UPDATED = "progress_updated"  # reserved alias of goal_completed


# Kinds produced by a completion transition; only these are voided on un-completion.
COMPLETION_KINDS: tuple[EventKind, ...] = (
    EventKind.GOAL_COMPLETED,
    EventKind.BINGO,
    EventKind.BOARD_COMPLETED,
)


class ReactionType(StrEnum):
    """Reaction values a viewer can leave on an event."""

    UP = "up"
    DOWN = "down"


class ReactionOutcome(StrEnum):
    """What ``toggle_reaction`` did."""

    ADDED = "added"
    CHANGED = "changed"
    REMOVED = "removed"


class OutboxOperation(StrEnum):
    """Deferred event-log operations recorded in the outbox."""

    APPEND = "append"
    VOID = "void"


# =============================================================================
# SQLModel Tables
# =============================================================================


class UserRow(SQLModel, table=True):
    """Identity record supplied by the authentication collaborator.

    Attributes:
        id: User ID (primary key)
        name: Display name from the identity provider
        email: Email address
        created_at: ISO8601 UTC creation timestamp
    """

    id: str = Field(primary_key=True)
    name: Optional[str] = None
    email: Optional[str] = None
    created_at: Optional[str] = None


class UserProfileRow(SQLModel, table=True):
    """User-editable profile data.

    Attributes:
        user_id: FK to UserRow.id (primary key)
        username: Unique lowercase handle (indexed)
        avatar_handle: Object storage handle of the avatar image
        bio: Free-form biography
        updated_at: ISO8601 UTC last modification timestamp
    """

    user_id: str = Field(primary_key=True)
    username: Optional[str] = Field(default=None, index=True, unique=True)
    avatar_handle: Optional[str] = None
    bio: Optional[str] = None
    updated_at: str


class BoardRow(SQLModel, table=True):
    """A size x size bingo board owned by one user.

    Attributes:
        id: Board ID (primary key)
        user_id: Owner (indexed)
        name: Board title
        description: Optional description
        size: Grid dimension
        year: Year bucket the board belongs to (indexed)
        share_id: Unguessable public share token (unique, indexed)
        difficulty: AI difficulty label (Easy/Medium/Hard/Expert)
        difficulty_summary: AI difficulty analysis text
        created_at: ISO8601 UTC creation timestamp (indexed)
        updated_at: ISO8601 UTC last modification timestamp
    """

    id: str = Field(primary_key=True)
    user_id: str = Field(index=True)
    name: str
    description: Optional[str] = None
    size: int
    year: int = Field(index=True)
    share_id: Optional[str] = Field(default=None, index=True, unique=True)
    difficulty: Optional[str] = None
    difficulty_summary: Optional[str] = None
    created_at: str = Field(index=True)
    updated_at: str


class GoalRow(SQLModel, table=True):
    """One cell of a board.

    A goal is exactly one of plain, streak or progress. Free-space goals are
    always completed and never streak or progress goals.

    Attributes:
        id: Goal ID (primary key)
        board_id: FK to BoardRow.id (indexed)
        user_id: Owner (indexed)
        text: Goal text (empty means unfilled)
        position: Grid position in 0..size*size-1
        is_free_space: Set once at creation
        is_completed: Completion flag
        completed_at: ISO8601 UTC completion timestamp
        is_streak_goal: Streak sub-state flag
        streak_target_days: Streak target in days
        streak_start_date: ISO8601 UTC start of the current streak
        is_progress_goal: Progress sub-state flag
        progress_target: Counter target
        progress_current: Counter value
    """

    id: str = Field(primary_key=True)
    board_id: str = Field(foreign_key="boardrow.id", index=True)
    user_id: str = Field(index=True)
    text: str = ""
    position: int
    is_free_space: bool = False
    is_completed: bool = False
    completed_at: Optional[str] = None
    is_streak_goal: bool = False
    streak_target_days: Optional[int] = None
    streak_start_date: Optional[str] = None
    is_progress_goal: bool = False
    progress_target: Optional[int] = None
    progress_current: Optional[int] = None
    created_at: str
    updated_at: str


class EventRow(SQLModel, table=True):
    """Append-only community feed entry.

    Content is immutable after insert; only ``voided_at`` is ever set.

    Attributes:
        id: Autoincrement ID giving the append order (primary key)
        user_id: Acting user (indexed)
        kind: EventKind value
        board_id: Board the event is about (indexed)
        goal_id: Goal that caused the event (indexed)
        board_name: Board name at the time of the event
        goal_text: Goal text at the time of the event
        metadata_json: Kind-specific JSON payload
        community_id: Optional community scope
        created_at: ISO8601 UTC creation timestamp (indexed)
        voided_at: ISO8601 UTC retraction timestamp
        source_key: Outbox entry that produced this event (unique)
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    kind: str
    board_id: Optional[str] = Field(default=None, index=True)
    goal_id: Optional[str] = Field(default=None, index=True)
    board_name: str
    goal_text: Optional[str] = None
    metadata_json: Optional[str] = None
    community_id: Optional[str] = None
    created_at: str = Field(index=True)
    voided_at: Optional[str] = None
    source_key: Optional[str] = Field(default=None, unique=True)

    @property
    def event_metadata(self) -> dict[str, Any]:
        """Parsed metadata payload (empty dict when absent)."""
        return load_metadata(self.metadata_json)

    @property
    def is_voided(self) -> bool:
        return self.voided_at is not None


class ReactionRow(SQLModel, table=True):
    """One up/down reaction per (event, user).

    Attributes:
        id: Reaction ID (primary key)
        event_id: FK to EventRow.id (indexed)
        user_id: Reacting user (indexed)
        type: ReactionType value
        created_at: ISO8601 UTC timestamp of the last change
    """

    __table_args__ = (UniqueConstraint("event_id", "user_id"),)

    id: str = Field(primary_key=True)
    event_id: int = Field(foreign_key="eventrow.id", index=True)
    user_id: str = Field(index=True)
    type: str
    created_at: str


class CommentRow(SQLModel, table=True):
    """Comment on a feed event.

    Attributes:
        id: Comment ID (primary key)
        event_id: FK to EventRow.id (indexed)
        user_id: Author
        text: Trimmed comment body
        created_at: ISO8601 UTC creation timestamp
    """

    id: str = Field(primary_key=True)
    event_id: int = Field(foreign_key="eventrow.id", index=True)
    user_id: str
    text: str
    created_at: str


class FeedOptInRow(SQLModel, table=True):
    """Existence row granting a user a place in the public feed."""

    user_id: str = Field(primary_key=True)
    opted_in_at: str


class CommunityRow(SQLModel, table=True):
    """Private group with an invite code.

    Attributes:
        id: Community ID (primary key)
        name: Display name
        owner_id: Creating user (indexed)
        invite_code: Join token (unique, indexed)
        created_at: ISO8601 UTC creation timestamp
    """

    id: str = Field(primary_key=True)
    name: str
    owner_id: str = Field(index=True)
    invite_code: str = Field(index=True, unique=True)
    created_at: str


class CommunityMemberRow(SQLModel, table=True):
    """Membership of a user in a community."""

    __table_args__ = (UniqueConstraint("community_id", "user_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    community_id: str = Field(foreign_key="communityrow.id", index=True)
    user_id: str = Field(index=True)
    joined_at: str


class WatchedBoardRow(SQLModel, table=True):
    """Explicit subscription of a user to someone else's board."""

    __table_args__ = (UniqueConstraint("user_id", "board_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    board_id: str = Field(foreign_key="boardrow.id", index=True)
    created_at: str


class OutboxRow(SQLModel, table=True):
    """Pending event-log operation written in the same transaction as a goal change.

    Attributes:
        id: Autoincrement ID giving the dispatch order (primary key)
        operation: OutboxOperation value
        goal_id: Goal the operation concerns (indexed)
        payload_json: Serialized EventDraft for appends, event kinds for voids
        created_at: ISO8601 UTC enqueue timestamp
        processed_at: ISO8601 UTC dispatch timestamp (indexed)
        attempts: Number of failed dispatch attempts
        last_error: Message of the last dispatch failure
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    operation: str
    goal_id: Optional[str] = Field(default=None, index=True)
    payload_json: Optional[str] = None
    created_at: str
    processed_at: Optional[str] = Field(default=None, index=True)
    attempts: int = 0
    last_error: Optional[str] = None


# =============================================================================
# Pydantic Read Models
# =============================================================================


class EventDraft(BaseModel):
    """Event content captured at mutation time and appended by the dispatcher."""

    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    user_id: str
    kind: EventKind
    board_id: Optional[str] = None
    goal_id: Optional[str] = None
    board_name: str
    goal_text: Optional[str] = None
    metadata: dict[str, Any] = PydanticField(default_factory=dict)
    community_id: Optional[str] = None
    created_at: Optional[str] = None


class BoardStats(BaseModel):
    """Completion statistics of one board."""

    total_goals: int = 0
    completed_goals: int = 0
    completion_percent: int = 0


class BoardSummary(BaseModel):
    """Board with completion statistics, as listed on overview pages."""

    model_config = ConfigDict(extra="ignore", from_attributes=True)

    id: str
    user_id: str
    name: str
    description: Optional[str] = None
    size: int
    year: int
    share_id: Optional[str] = None
    difficulty: Optional[str] = None
    difficulty_summary: Optional[str] = None
    created_at: str
    updated_at: str
    total_goals: int = 0
    completed_goals: int = 0
    completion_percent: int = 0
    owner_name: Optional[str] = None


class BoardDetail(BaseModel):
    """Board plus its goals ordered by position."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    board: BoardRow
    goals: list[GoalRow]
    owner_name: Optional[str] = None


class FeedItem(BaseModel):
    """Feed event enriched for one viewer."""

    id: int
    user_id: str
    kind: str
    board_id: Optional[str] = None
    goal_id: Optional[str] = None
    board_name: str
    goal_text: Optional[str] = None
    metadata: dict[str, Any] = PydanticField(default_factory=dict)
    community_id: Optional[str] = None
    created_at: str
    user_name: str
    avatar_url: Optional[str] = None
    share_id: Optional[str] = None
    up_count: int = 0
    down_count: int = 0
    user_reaction: Optional[str] = None
    comment_count: int = 0


class ReactionSummary(BaseModel):
    """Reaction rollup of one event."""

    up: int = 0
    down: int = 0
    user_reaction: Optional[str] = None


class CommentView(BaseModel):
    """Comment enriched with its author's display data."""

    id: str
    event_id: int
    user_id: str
    text: str
    created_at: str
    user_name: str
    avatar_url: Optional[str] = None


class ProfileView(BaseModel):
    """Public profile of a user."""

    user_id: str
    username: Optional[str] = None
    display_name: str
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    email: Optional[str] = None


class CommunitySummary(BaseModel):
    """Community as listed for one of its members."""

    id: str
    name: str
    owner_id: str
    invite_code: Optional[str] = None
    created_at: str
    member_count: int = 0
    is_owner: bool = False


class CommunityMember(BaseModel):
    user_id: str
    user_name: str
    avatar_url: Optional[str] = None
    joined_at: str


class CommunityDetail(CommunitySummary):
    members: list[CommunityMember] = PydanticField(default_factory=list)


class DifficultyRanking(BaseModel):
    """Result of an AI difficulty ranking."""

    ranking: str
    difficulty: Optional[str] = None
    available: bool = True


class GoalExtraction(BaseModel):
    """Result of extracting goals from an image."""

    success: bool
    goals: list[str] = PydanticField(default_factory=list)
    error: Optional[str] = None


__all__ = [
    "EventKind",
    "ReactionType",
    "ReactionOutcome",
    "OutboxOperation",
    "COMPLETION_KINDS",
    "UserRow",
    "UserProfileRow",
    "BoardRow",
    "GoalRow",
    "EventRow",
    "ReactionRow",
    "CommentRow",
    "FeedOptInRow",
    "CommunityRow",
    "CommunityMemberRow",
    "WatchedBoardRow",
    "OutboxRow",
    "EventDraft",
    "BoardStats",
    "BoardSummary",
    "BoardDetail",
    "FeedItem",
    "ReactionSummary",
    "CommentView",
    "ProfileView",
    "CommunitySummary",
    "CommunityMember",
    "CommunityDetail",
    "DifficultyRanking",
    "GoalExtraction",
]
