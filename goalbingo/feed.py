"""Feed assembly for the public, community and watch scopes.

Each scope decides who may look (``authorize``) and which events are
candidates (``candidates``). Assembly then enriches the candidates for the
viewer with batched lookups, one query per concern regardless of page size.

Example:
    >>> assembler = FeedAssembler(ctx)
    >>> items = assembler.assemble("u1", CommunityScope("c1"))
    >>> [item.kind for item in items]
    ['bingo', 'goal_completed']
"""

import time
from collections import Counter
from typing import Protocol, runtime_checkable

from sqlmodel import Session

from goalbingo.communities import is_member, member_ids
from goalbingo.config import settings
from goalbingo.context import ServiceContext
from goalbingo.errors import NotFound
from goalbingo.logging import logger, set_request_context
from goalbingo.metrics import feed_assembly_duration_seconds, feed_requests_total
from goalbingo.models import BoardRow, EventRow, FeedItem, ReactionType, WatchedBoardRow
from goalbingo.profiles import load_identities
from goalbingo.repository import Repository
from goalbingo.social import comment_counts, reaction_counts, viewer_reactions
from goalbingo.telemetry import get_tracer, traced

tracer = get_tracer(__name__)


# =============================================================================
# Visibility Scopes
# =============================================================================


@runtime_checkable
class VisibilityScope(Protocol):
    """Strategy deciding which events a viewer may see."""

    name: str

    def authorize(self, session: Session, ctx: ServiceContext, viewer_id: str) -> bool:
        """Return False for an empty feed; raise NotFound to reject the request."""
        ...

    def candidates(self, session: Session, ctx: ServiceContext, viewer_id: str) -> list[EventRow]:
        """Non-voided events, newest first."""
        ...


class PublicScope:
    """Events of everyone currently opted in, shown only to opted-in viewers."""

    name = "public"

    def authorize(self, session: Session, ctx: ServiceContext, viewer_id: str) -> bool:
        return ctx.event_log.is_opted_in(session, viewer_id)

    def candidates(self, session: Session, ctx: ServiceContext, viewer_id: str) -> list[EventRow]:
        return ctx.event_log.recent(session, settings.feed_fetch_limit, opted_in_only=True)


class CommunityScope:
    """Events of a community's members, shown only to members."""

    name = "community"

    def __init__(self, community_id: str):
        self.community_id = community_id

    def authorize(self, session: Session, ctx: ServiceContext, viewer_id: str) -> bool:
        if not is_member(session, self.community_id, viewer_id):
            raise NotFound("Community not found")
        return True

    def candidates(self, session: Session, ctx: ServiceContext, viewer_id: str) -> list[EventRow]:
        return ctx.event_log.recent(
            session,
            settings.feed_fetch_limit,
            user_ids=member_ids(session, self.community_id),
        )


class WatchScope:
    """Events about boards the viewer watches."""

    name = "watch"

    def authorize(self, session: Session, ctx: ServiceContext, viewer_id: str) -> bool:
        return True

    def candidates(self, session: Session, ctx: ServiceContext, viewer_id: str) -> list[EventRow]:
        board_ids = [w.board_id for w in Repository(session, WatchedBoardRow).find_by(user_id=viewer_id)]
        return ctx.event_log.recent(session, settings.watch_feed_fetch_limit, board_ids=board_ids)


# =============================================================================
# Feed Assembler
# =============================================================================


class FeedAssembler:
    """Builds enriched feed pages for a viewer.

    Args:
        ctx: Shared service collaborators
    """

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx

    def assemble(self, viewer_id: str | None, scope: VisibilityScope) -> list[FeedItem]:
        """Assemble one feed page.

        Args:
            viewer_id: Caller (anonymous callers get an empty feed)
            scope: Visibility strategy

        Returns:
            At most settings.feed_page_size items, newest first

        Raises:
            NotFound: The scope rejected the viewer (e.g. not a community member)
        """
        if not viewer_id:
            return []
        set_request_context(user_id=viewer_id, operation=f"feed.{scope.name}")
        feed_requests_total.labels(scope=scope.name).inc()
        start = time.perf_counter()

        with traced(tracer, "feed.assemble", {"scope": scope.name, "viewer_id": viewer_id}) as span:
            with self.ctx.db.session() as session:
                if not scope.authorize(session, self.ctx, viewer_id):
                    span.set_attribute("authorized", False)
                    return []
                events = scope.candidates(session, self.ctx, viewer_id)[: settings.feed_page_size]
                items = self._enrich(session, events, viewer_id)
            span.set_attribute("items", len(items))

        feed_assembly_duration_seconds.labels(scope=scope.name).observe(time.perf_counter() - start)
        logger.debug(f"Assembled {scope.name} feed with {len(items)} items for {viewer_id}")
        return items

    def _enrich(self, session: Session, events: list[EventRow], viewer_id: str) -> list[FeedItem]:
        if not events:
            return []
        event_ids = [e.id for e in events if e.id is not None]
        identities = load_identities(session, self.ctx, [e.user_id for e in events])
        board_ids = sorted({e.board_id for e in events if e.board_id})
        share_ids = {
            b.id: b.share_id for b in Repository(session, BoardRow).find_by(id=board_ids)
        } if board_ids else {}
        tallies = reaction_counts(session, event_ids)
        mine = viewer_reactions(session, event_ids, viewer_id)
        comments = comment_counts(session, event_ids)

        items = []
        for event in events:
            identity = identities[event.user_id]
            tally = tallies.get(event.id, Counter())
            items.append(
                FeedItem(
                    id=event.id,
                    user_id=event.user_id,
                    kind=event.kind,
                    board_id=event.board_id,
                    goal_id=event.goal_id,
                    board_name=event.board_name,
                    goal_text=event.goal_text,
                    metadata=event.event_metadata,
                    community_id=event.community_id,
                    created_at=event.created_at,
                    user_name=identity.name,
                    avatar_url=identity.avatar_url,
                    share_id=share_ids.get(event.board_id) if event.board_id else None,
                    up_count=tally[ReactionType.UP.value],
                    down_count=tally[ReactionType.DOWN.value],
                    user_reaction=mine.get(event.id),
                    comment_count=comments.get(event.id, 0),
                )
            )
        return items

    def public_feed(self, viewer_id: str | None) -> list[FeedItem]:
        return self.assemble(viewer_id, PublicScope())

    def community_feed(self, viewer_id: str | None, community_id: str) -> list[FeedItem]:
        return self.assemble(viewer_id, CommunityScope(community_id))

    def watch_feed(self, viewer_id: str | None) -> list[FeedItem]:
        return self.assemble(viewer_id, WatchScope())


__all__ = ["CommunityScope", "FeedAssembler", "PublicScope", "VisibilityScope", "WatchScope"]
