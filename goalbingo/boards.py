"""Board lifecycle: creation, listing, sharing and community browsing.

Creating a board creates all of its goals in the same transaction. The
center cell is the free space: pre-completed, fixed text, never editable.
"""

from collections import defaultdict
from collections.abc import Sequence

from sqlmodel import Session, col, select

from goalbingo.config import settings
from goalbingo.context import ServiceContext, require_user
from goalbingo.errors import NotFound, PreconditionFailed, ValidationFailed
from goalbingo.grid import board_stats, free_space_position
from goalbingo.logging import logger, set_request_context
from goalbingo.models import (
    BoardDetail,
    BoardRow,
    BoardSummary,
    EventDraft,
    EventKind,
    FeedOptInRow,
    GoalRow,
    WatchedBoardRow,
)
from goalbingo.profiles import load_identities
from goalbingo.repository import RepositoryFactory
from goalbingo.utils import generate_token, new_id

FREE_SPACE_TEXT = "FREE SPACE"


# =============================================================================
# Shared helpers
# =============================================================================


def goals_by_board(session: Session, board_ids: Sequence[str]) -> dict[str, list[GoalRow]]:
    """Load the goals of many boards in one query, grouped and ordered by position."""
    grouped: dict[str, list[GoalRow]] = defaultdict(list)
    if not board_ids:
        return grouped
    rows = session.exec(
        select(GoalRow)
        .where(col(GoalRow.board_id).in_(list(board_ids)))
        .order_by(col(GoalRow.board_id), col(GoalRow.position))
    ).all()
    for goal in rows:
        grouped[goal.board_id].append(goal)
    return grouped


def summarize_boards(
    session: Session,
    ctx: ServiceContext,
    boards: Sequence[BoardRow],
    with_owner: bool = False,
) -> list[BoardSummary]:
    """Attach completion statistics (and optionally owner names) to boards."""
    goals = goals_by_board(session, [b.id for b in boards])
    owners = load_identities(session, ctx, [b.user_id for b in boards]) if with_owner else {}
    summaries = []
    for board in boards:
        stats = board_stats(goals.get(board.id, []))
        summaries.append(
            BoardSummary.model_validate(
                {
                    **board.model_dump(),
                    **stats.model_dump(),
                    "owner_name": owners[board.user_id].name if board.user_id in owners else None,
                }
            )
        )
    return summaries


def validate_board_name(name: str | None) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationFailed("Board name cannot be empty")
    if len(name) > settings.max_board_name_length:
        raise ValidationFailed(
            f"Board name must be at most {settings.max_board_name_length} characters"
        )
    return name


def validate_board_size(size: int) -> int:
    if size % 2 == 0 or not settings.min_board_size <= size <= settings.max_board_size:
        raise ValidationFailed(
            f"Board size must be an odd number between "
            f"{settings.min_board_size} and {settings.max_board_size}"
        )
    return size


# =============================================================================
# Board Service
# =============================================================================


class BoardService:
    """Create, read, update, share and delete boards.

    Args:
        ctx: Shared service collaborators
    """

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx

    def _owned_board(self, session: Session, user_id: str, board_id: str) -> BoardRow:
        board = session.get(BoardRow, board_id)
        if board is None or board.user_id != user_id:
            raise NotFound("Board not found")
        set_request_context(board_id=board.id)
        return board

    def _detail(self, session: Session, board: BoardRow, with_owner: bool = True) -> BoardDetail:
        goals = goals_by_board(session, [board.id]).get(board.id, [])
        owner_name = None
        if with_owner:
            owner_name = load_identities(session, self.ctx, [board.user_id])[board.user_id].name
        return BoardDetail(board=board, goals=goals, owner_name=owner_name)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def create_board(
        self,
        user_id: str | None,
        name: str,
        size: int | None = None,
        year: int | None = None,
        description: str | None = None,
        goal_texts: Sequence[str] | None = None,
    ) -> BoardRow:
        """Create a board and all size*size of its goals.

        Args:
            user_id: Owner
            name: Board title (trimmed, 1..100 characters)
            size: Odd grid dimension (defaults to settings.default_board_size)
            year: Year bucket (defaults to the current year)
            description: Optional description
            goal_texts: Texts for the non-free positions, in position order

        Returns:
            The stored board

        Raises:
            ValidationFailed: Invalid name, size or too many goal texts

        Example:
            >>> board = boards.create_board("u1", "2025 Goals", goal_texts=["Run a 10k"])
            >>> board.size
            5
        """
        user_id = require_user(user_id, "create_board")
        name = validate_board_name(name)
        size = validate_board_size(size or settings.default_board_size)
        goal_texts = [t.strip() for t in (goal_texts or [])]
        if len(goal_texts) > size * size - 1:
            raise ValidationFailed(f"A {size}x{size} board holds at most {size * size - 1} goals")
        if any(len(t) > settings.max_goal_text_length for t in goal_texts):
            raise ValidationFailed(
                f"Goal text must be at most {settings.max_goal_text_length} characters"
            )

        now = self.ctx.now_iso()
        board = BoardRow(
            id=new_id(),
            user_id=user_id,
            name=name,
            description=(description or "").strip() or None,
            size=size,
            year=year or self.ctx.now().year,
            created_at=now,
            updated_at=now,
        )

        free = free_space_position(size)
        texts = iter(goal_texts)
        goals = []
        for position in range(size * size):
            is_free = position == free
            goals.append(
                GoalRow(
                    id=new_id(),
                    board_id=board.id,
                    user_id=user_id,
                    text=FREE_SPACE_TEXT if is_free else next(texts, ""),
                    position=position,
                    is_free_space=is_free,
                    is_completed=is_free,
                    completed_at=now if is_free else None,
                    created_at=now,
                    updated_at=now,
                )
            )

        with self.ctx.db.transaction() as session:
            repos = RepositoryFactory(session)
            repos.for_entity(BoardRow).add(board)
            repos.for_entity(GoalRow).add_all(goals)
            self.ctx.outbox.enqueue_append(
                session,
                EventDraft(
                    user_id=user_id,
                    kind=EventKind.BOARD_CREATED,
                    board_id=board.id,
                    board_name=board.name,
                    created_at=now,
                ),
            )
        self.ctx.after_commit()

        logger.info(f"✅ Created {size}x{size} board {board.id} '{board.name}'")
        return board

    def update_board(
        self,
        user_id: str | None,
        board_id: str,
        name: str | None = None,
        description: str | None = None,
        difficulty: str | None = None,
        difficulty_summary: str | None = None,
    ) -> BoardRow:
        """Update the given board fields; omitted fields are left unchanged."""
        user_id = require_user(user_id, "update_board")
        with self.ctx.db.transaction() as session:
            board = self._owned_board(session, user_id, board_id)
            if name is not None:
                board.name = validate_board_name(name)
            if description is not None:
                board.description = description.strip() or None
            if difficulty is not None:
                board.difficulty = difficulty
            if difficulty_summary is not None:
                board.difficulty_summary = difficulty_summary
            board.updated_at = self.ctx.now_iso()
            session.add(board)
        return board

    def delete_board(self, user_id: str | None, board_id: str) -> None:
        """Delete a board together with its goals and watch rows.

        Events that mention the board stay in the log.
        """
        user_id = require_user(user_id, "delete_board")
        with self.ctx.db.transaction() as session:
            board = self._owned_board(session, user_id, board_id)
            repos = RepositoryFactory(session)
            goals = repos.for_entity(GoalRow).delete_by(board_id=board_id)
            watches = repos.for_entity(WatchedBoardRow).delete_by(board_id=board_id)
            repos.for_entity(BoardRow).delete(board)
        logger.info(f"Deleted board {board_id} ({goals} goals, {watches} watchers)")

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def list_boards(self, user_id: str | None, year: int | None = None) -> list[BoardSummary]:
        """The caller's boards, newest first, with completion statistics."""
        if not user_id:
            return []
        with self.ctx.db.session() as session:
            filters = {"user_id": user_id}
            if year is not None:
                filters["year"] = year
            boards = RepositoryFactory(session).for_entity(BoardRow).find_by(
                order_by="created_at", descending=True, **filters
            )
            return summarize_boards(session, self.ctx, boards)

    def get_board(self, user_id: str | None, board_id: str) -> BoardRow:
        user_id = require_user(user_id)
        with self.ctx.db.session() as session:
            return self._owned_board(session, user_id, board_id)

    def get_board_with_goals(self, user_id: str | None, board_id: str) -> BoardDetail:
        user_id = require_user(user_id)
        with self.ctx.db.session() as session:
            board = self._owned_board(session, user_id, board_id)
            return self._detail(session, board, with_owner=False)

    # -------------------------------------------------------------------------
    # Sharing
    # -------------------------------------------------------------------------

    def generate_share_link(self, user_id: str | None, board_id: str) -> str:
        """Return the board's share token, creating one if needed."""
        user_id = require_user(user_id, "generate_share_link")
        with self.ctx.db.transaction() as session:
            board = self._owned_board(session, user_id, board_id)
            if board.share_id:
                return board.share_id
            board.share_id = generate_token(settings.share_id_length)
            board.updated_at = self.ctx.now_iso()
            session.add(board)
        logger.info(f"Board {board_id} shared as {board.share_id}")
        return board.share_id

    def remove_share_link(self, user_id: str | None, board_id: str) -> None:
        user_id = require_user(user_id, "remove_share_link")
        with self.ctx.db.transaction() as session:
            board = self._owned_board(session, user_id, board_id)
            board.share_id = None
            board.updated_at = self.ctx.now_iso()
            session.add(board)

    def get_shared_board(self, share_id: str) -> BoardDetail:
        """Anonymous read of a shared board.

        Raises:
            NotFound: Unknown share token
        """
        with self.ctx.db.session() as session:
            board = RepositoryFactory(session).for_entity(BoardRow).first_by(share_id=share_id)
            if board is None:
                raise NotFound("Shared board not found")
            return self._detail(session, board)

    # -------------------------------------------------------------------------
    # Community browsing
    # -------------------------------------------------------------------------

    def get_community_boards(self, viewer_id: str | None) -> list[BoardSummary]:
        """Newest boards of other opted-in users.

        The viewer must be opted in to the public feed; otherwise the list is empty.
        """
        if not viewer_id:
            return []
        with self.ctx.db.session() as session:
            if not self.ctx.event_log.is_opted_in(session, viewer_id):
                return []
            boards = session.exec(
                select(BoardRow)
                .where(col(BoardRow.user_id).in_(select(FeedOptInRow.user_id)))
                .where(BoardRow.user_id != viewer_id)
                .order_by(col(BoardRow.created_at).desc())
                .limit(settings.community_boards_limit)
            ).all()
            return summarize_boards(session, self.ctx, boards, with_owner=True)

    def get_community_board_with_goals(self, viewer_id: str | None, board_id: str) -> BoardDetail:
        """Read another user's board; its owner must be opted in.

        Raises:
            NotFound: Board missing
            PreconditionFailed: Owner is not sharing in the public feed
        """
        require_user(viewer_id)
        with self.ctx.db.session() as session:
            board = session.get(BoardRow, board_id)
            if board is None:
                raise NotFound("Board not found")
            if not self.ctx.event_log.is_opted_in(session, board.user_id):
                raise PreconditionFailed("Board owner is not sharing to the community feed")
            return self._detail(session, board)


__all__ = [
    "BoardService",
    "FREE_SPACE_TEXT",
    "goals_by_board",
    "summarize_boards",
    "validate_board_name",
    "validate_board_size",
]
