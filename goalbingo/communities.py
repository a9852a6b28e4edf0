"""Public-feed opt-in and private communities.

Opt-in, community membership and watching are independent visibility
grants. Opting out does not retract existing events; the public feed
simply stops showing them while the actor is opted out.
"""

from sqlalchemy import func
from sqlmodel import Session, col, select

from goalbingo.config import settings
from goalbingo.context import ServiceContext, require_user
from goalbingo.errors import NotFound, PreconditionFailed, ValidationFailed
from goalbingo.logging import logger
from goalbingo.models import (
    CommunityDetail,
    CommunityMember,
    CommunityMemberRow,
    CommunityRow,
    CommunitySummary,
    FeedOptInRow,
)
from goalbingo.profiles import load_identities
from goalbingo.repository import Repository, RepositoryFactory
from goalbingo.utils import generate_token, new_id


def is_member(session: Session, community_id: str, user_id: str) -> bool:
    return Repository(session, CommunityMemberRow).exists(community_id=community_id, user_id=user_id)


def member_ids(session: Session, community_id: str) -> list[str]:
    return [m.user_id for m in Repository(session, CommunityMemberRow).find_by(community_id=community_id)]


class CommunityService:
    """Feed opt-in toggling and community membership management."""

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx

    # =========================================================================
    # Public feed opt-in
    # =========================================================================

    def get_feed_status(self, user_id: str | None) -> bool:
        """Whether the caller is opted in to the public feed."""
        if not user_id:
            return False
        with self.ctx.db.session() as session:
            return self.ctx.event_log.is_opted_in(session, user_id)

    def toggle_feed_opt_in(self, user_id: str | None) -> bool:
        """Flip the caller's public-feed opt-in and return the new state."""
        user_id = require_user(user_id, "toggle_feed_opt_in")
        with self.ctx.db.transaction() as session:
            opt_in = session.get(FeedOptInRow, user_id)
            if opt_in is not None:
                session.delete(opt_in)
                opted_in = False
            else:
                session.add(FeedOptInRow(user_id=user_id, opted_in_at=self.ctx.now_iso()))
                opted_in = True
        logger.info(f"{user_id} {'joined' if opted_in else 'left'} the public feed")
        return opted_in

    # =========================================================================
    # Communities
    # =========================================================================

    def _community(self, session: Session, community_id: str) -> CommunityRow:
        community = session.get(CommunityRow, community_id)
        if community is None:
            raise NotFound("Community not found")
        return community

    def _owned_community(self, session: Session, user_id: str, community_id: str) -> CommunityRow:
        community = self._community(session, community_id)
        if community.owner_id != user_id:
            raise NotFound("Community not found")
        return community

    def create_community(self, user_id: str | None, name: str) -> CommunityRow:
        """Create a community with the caller as owner and first member.

        Raises:
            ValidationFailed: Name empty or longer than the configured limit
        """
        user_id = require_user(user_id, "create_community")
        name = (name or "").strip()
        if not name:
            raise ValidationFailed("Community name cannot be empty")
        if len(name) > settings.max_community_name_length:
            raise ValidationFailed(
                f"Community name must be at most {settings.max_community_name_length} characters"
            )

        now = self.ctx.now_iso()
        community = CommunityRow(
            id=new_id(),
            name=name,
            owner_id=user_id,
            invite_code=generate_token(settings.invite_code_length),
            created_at=now,
        )
        with self.ctx.db.transaction() as session:
            repos = RepositoryFactory(session)
            repos.for_entity(CommunityRow).add(community)
            repos.for_entity(CommunityMemberRow).add(
                CommunityMemberRow(community_id=community.id, user_id=user_id, joined_at=now)
            )
        logger.info(f"✅ Community '{name}' created by {user_id}")
        return community

    def join_community(self, user_id: str | None, invite_code: str) -> str:
        """Join by invite code; joining twice is a no-op.

        Returns:
            The community id

        Raises:
            NotFound: Unknown invite code
        """
        user_id = require_user(user_id, "join_community")
        code = (invite_code or "").strip().lower()
        with self.ctx.db.transaction() as session:
            community = Repository(session, CommunityRow).first_by(invite_code=code)
            if community is None:
                raise NotFound("Invalid invite code")
            if not is_member(session, community.id, user_id):
                session.add(
                    CommunityMemberRow(
                        community_id=community.id, user_id=user_id, joined_at=self.ctx.now_iso()
                    )
                )
                logger.info(f"{user_id} joined community {community.id}")
        return community.id

    def leave_community(self, user_id: str | None, community_id: str) -> None:
        """Leave a community.

        Raises:
            NotFound: Community missing or caller not a member
            PreconditionFailed: The owner cannot leave
        """
        user_id = require_user(user_id, "leave_community")
        with self.ctx.db.transaction() as session:
            community = self._community(session, community_id)
            if community.owner_id == user_id:
                raise PreconditionFailed("Owner cannot leave the community; delete it instead")
            removed = Repository(session, CommunityMemberRow).delete_by(
                community_id=community_id, user_id=user_id
            )
            if not removed:
                raise NotFound("Not a member of this community")

    def delete_community(self, user_id: str | None, community_id: str) -> None:
        """Delete a community and its memberships (owner only)."""
        user_id = require_user(user_id, "delete_community")
        with self.ctx.db.transaction() as session:
            community = self._owned_community(session, user_id, community_id)
            repos = RepositoryFactory(session)
            members = repos.for_entity(CommunityMemberRow).delete_by(community_id=community_id)
            repos.for_entity(CommunityRow).delete(community)
        logger.info(f"Deleted community {community_id} ({members} members)")

    def regenerate_invite_code(self, user_id: str | None, community_id: str) -> str:
        """Replace the invite code (owner only); the old code stops working."""
        user_id = require_user(user_id, "regenerate_invite_code")
        with self.ctx.db.transaction() as session:
            community = self._owned_community(session, user_id, community_id)
            community.invite_code = generate_token(settings.invite_code_length)
            session.add(community)
        return community.invite_code

    # =========================================================================
    # Reads
    # =========================================================================

    def get_my_communities(self, user_id: str | None) -> list[CommunitySummary]:
        """Communities the caller belongs to, with member counts."""
        if not user_id:
            return []
        with self.ctx.db.session() as session:
            communities = session.exec(
                select(CommunityRow)
                .join(CommunityMemberRow, col(CommunityMemberRow.community_id) == col(CommunityRow.id))
                .where(CommunityMemberRow.user_id == user_id)
                .order_by(col(CommunityRow.created_at))
            ).all()
            ids = [c.id for c in communities]
            counts = dict(
                session.exec(
                    select(CommunityMemberRow.community_id, func.count())
                    .where(col(CommunityMemberRow.community_id).in_(ids))
                    .group_by(col(CommunityMemberRow.community_id))
                ).all()
            ) if ids else {}
            return [
                CommunitySummary(
                    id=c.id,
                    name=c.name,
                    owner_id=c.owner_id,
                    invite_code=c.invite_code,
                    created_at=c.created_at,
                    member_count=counts.get(c.id, 0),
                    is_owner=c.owner_id == user_id,
                )
                for c in communities
            ]

    def get_community(self, user_id: str | None, community_id: str) -> CommunityDetail:
        """Community details with its member list (members only).

        Raises:
            NotFound: Community missing or caller not a member
        """
        user_id = require_user(user_id)
        with self.ctx.db.session() as session:
            community = self._community(session, community_id)
            if not is_member(session, community_id, user_id):
                raise NotFound("Community not found")
            rows = Repository(session, CommunityMemberRow).find_by(
                community_id=community_id, order_by="joined_at"
            )
            identities = load_identities(session, self.ctx, [m.user_id for m in rows])
            members = [
                CommunityMember(
                    user_id=m.user_id,
                    user_name=identities[m.user_id].name,
                    avatar_url=identities[m.user_id].avatar_url,
                    joined_at=m.joined_at,
                )
                for m in rows
            ]
            return CommunityDetail(
                id=community.id,
                name=community.name,
                owner_id=community.owner_id,
                invite_code=community.invite_code,
                created_at=community.created_at,
                member_count=len(members),
                is_owner=community.owner_id == user_id,
                members=members,
            )


__all__ = ["CommunityService", "is_member", "member_ids"]
