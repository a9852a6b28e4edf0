"""Reactions and comments on feed events.

Each viewer holds at most one reaction per event. Toggling the same type
removes it; toggling the other type switches it.
"""

from collections import Counter
from collections.abc import Sequence

from sqlalchemy import func
from sqlmodel import Session, col, select

from goalbingo.config import settings
from goalbingo.context import ServiceContext, require_user
from goalbingo.errors import NotFound, PreconditionFailed, ValidationFailed
from goalbingo.logging import logger
from goalbingo.models import (
    CommentRow,
    CommentView,
    EventRow,
    ReactionOutcome,
    ReactionRow,
    ReactionSummary,
    ReactionType,
)
from goalbingo.profiles import load_identities
from goalbingo.repository import Repository
from goalbingo.utils import new_id


# =============================================================================
# Batched lookups used by the feed
# =============================================================================


def reaction_counts(session: Session, event_ids: Sequence[int]) -> dict[int, Counter]:
    """Up/down tallies per event in one query."""
    tallies: dict[int, Counter] = {}
    if not event_ids:
        return tallies
    rows = session.exec(
        select(ReactionRow.event_id, ReactionRow.type, func.count())
        .where(col(ReactionRow.event_id).in_(list(event_ids)))
        .group_by(col(ReactionRow.event_id), col(ReactionRow.type))
    ).all()
    for event_id, reaction_type, count in rows:
        tallies.setdefault(event_id, Counter())[reaction_type] = count
    return tallies


def viewer_reactions(session: Session, event_ids: Sequence[int], viewer_id: str | None) -> dict[int, str]:
    if not event_ids or not viewer_id:
        return {}
    rows = Repository(session, ReactionRow).find_by(event_id=list(event_ids), user_id=viewer_id)
    return {r.event_id: r.type for r in rows}


def comment_counts(session: Session, event_ids: Sequence[int]) -> dict[int, int]:
    if not event_ids:
        return {}
    rows = session.exec(
        select(CommentRow.event_id, func.count())
        .where(col(CommentRow.event_id).in_(list(event_ids)))
        .group_by(col(CommentRow.event_id))
    ).all()
    return dict(rows)


# =============================================================================
# Social Service
# =============================================================================


class SocialService:
    """Reactions and comments on events."""

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx

    def _event(self, session: Session, event_id: int) -> EventRow:
        event = self.ctx.event_log.get(session, event_id)
        if event is None:
            raise NotFound("Event not found")
        return event

    def toggle_reaction(self, user_id: str | None, event_id: int, reaction_type: str) -> ReactionOutcome:
        """Add, switch or remove the caller's reaction on an event.

        Args:
            user_id: Caller
            event_id: Target event
            reaction_type: ``"up"`` or ``"down"``

        Returns:
            ``added`` when there was no reaction, ``changed`` when the other
            type was replaced, ``removed`` when the same type was toggled off

        Raises:
            ValidationFailed: Unknown reaction type
            NotFound: Event missing
        """
        user_id = require_user(user_id, "toggle_reaction")
        try:
            reaction = ReactionType(reaction_type)
        except ValueError as e:
            raise ValidationFailed(f"Invalid reaction type: {reaction_type!r}") from e

        with self.ctx.db.transaction() as session:
            self._event(session, event_id)
            reactions = Repository(session, ReactionRow)
            existing = reactions.first_by(event_id=event_id, user_id=user_id)
            if existing is None:
                reactions.add(
                    ReactionRow(
                        id=new_id(),
                        event_id=event_id,
                        user_id=user_id,
                        type=reaction.value,
                        created_at=self.ctx.now_iso(),
                    )
                )
                outcome = ReactionOutcome.ADDED
            elif existing.type == reaction.value:
                reactions.delete(existing)
                outcome = ReactionOutcome.REMOVED
            else:
                existing.type = reaction.value
                existing.created_at = self.ctx.now_iso()
                reactions.add(existing)
                outcome = ReactionOutcome.CHANGED

        logger.debug(f"Reaction {reaction.value} on event {event_id}: {outcome}")
        return outcome

    def get_reactions(self, event_id: int, viewer_id: str | None = None) -> ReactionSummary:
        with self.ctx.db.session() as session:
            tally = reaction_counts(session, [event_id]).get(event_id, Counter())
            return ReactionSummary(
                up=tally[ReactionType.UP.value],
                down=tally[ReactionType.DOWN.value],
                user_reaction=viewer_reactions(session, [event_id], viewer_id).get(event_id),
            )

    def add_comment(self, user_id: str | None, event_id: int, text: str) -> CommentRow:
        """Comment on an event.

        Raises:
            ValidationFailed: Empty after trimming or longer than the limit
            NotFound: Event missing
        """
        user_id = require_user(user_id, "add_comment")
        text = (text or "").strip()
        if not text:
            raise ValidationFailed("Comment cannot be empty")
        if len(text) > settings.max_comment_length:
            raise ValidationFailed(
                f"Comment must be at most {settings.max_comment_length} characters"
            )

        with self.ctx.db.transaction() as session:
            self._event(session, event_id)
            comment = Repository(session, CommentRow).add(
                CommentRow(
                    id=new_id(),
                    event_id=event_id,
                    user_id=user_id,
                    text=text,
                    created_at=self.ctx.now_iso(),
                )
            )
        return comment

    def delete_comment(self, user_id: str | None, comment_id: str) -> None:
        """Delete one of the caller's comments.

        Raises:
            NotFound: Comment missing
            PreconditionFailed: Caller is not the author
        """
        user_id = require_user(user_id, "delete_comment")
        with self.ctx.db.transaction() as session:
            comments = Repository(session, CommentRow)
            comment = comments.get(comment_id)
            if comment is None:
                raise NotFound("Comment not found")
            if comment.user_id != user_id:
                raise PreconditionFailed("Only the author can delete a comment")
            comments.delete(comment)

    def get_comments(self, event_id: int) -> list[CommentView]:
        """Comments of an event, oldest first, with author display data."""
        with self.ctx.db.session() as session:
            rows = session.exec(
                select(CommentRow)
                .where(CommentRow.event_id == event_id)
                .order_by(col(CommentRow.created_at), col(CommentRow.id))
            ).all()
            authors = load_identities(session, self.ctx, [c.user_id for c in rows])
            return [
                CommentView(
                    **c.model_dump(),
                    user_name=authors[c.user_id].name,
                    avatar_url=authors[c.user_id].avatar_url,
                )
                for c in rows
            ]


__all__ = ["SocialService", "comment_counts", "reaction_counts", "viewer_reactions"]
