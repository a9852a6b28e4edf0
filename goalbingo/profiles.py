"""User profiles and display-name resolution.

A user's public name is their profile username when set, otherwise the
name supplied by the identity provider, otherwise ``"Anonymous"``.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass

from sqlmodel import Session, col, select

from goalbingo.config import settings
from goalbingo.context import ServiceContext, require_user
from goalbingo.errors import NotFound, PreconditionFailed, ValidationFailed
from goalbingo.logging import logger
from goalbingo.models import ProfileView, UserProfileRow, UserRow
from goalbingo.repository import Repository

ANONYMOUS = "Anonymous"
USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


def display_name(profile: UserProfileRow | None, user: UserRow | None) -> str:
    """Pick the public name of a user."""
    if profile is not None and profile.username:
        return profile.username
    if user is not None and user.name:
        return user.name
    return ANONYMOUS


@dataclass
class Identity:
    """Display data of one user, as shown next to feed items and comments."""

    user_id: str
    name: str
    avatar_url: str | None = None


def load_identities(
    session: Session,
    ctx: ServiceContext,
    user_ids: Iterable[str],
) -> dict[str, Identity]:
    """Resolve display names and avatar URLs for many users in two queries."""
    ids = sorted(set(user_ids))
    if not ids:
        return {}

    users = {u.id: u for u in session.exec(select(UserRow).where(col(UserRow.id).in_(ids))).all()}
    profiles = {
        p.user_id: p
        for p in session.exec(select(UserProfileRow).where(col(UserProfileRow.user_id).in_(ids))).all()
    }
    identities = {}
    for user_id in ids:
        profile = profiles.get(user_id)
        identities[user_id] = Identity(
            user_id=user_id,
            name=display_name(profile, users.get(user_id)),
            avatar_url=ctx.avatar_url(profile.avatar_handle if profile else None),
        )
    return identities


class ProfileService:
    """Read and edit user profiles."""

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx

    def _view(self, session: Session, user_id: str, include_email: bool = False) -> ProfileView | None:
        user = session.get(UserRow, user_id)
        profile = session.get(UserProfileRow, user_id)
        if user is None and profile is None:
            return None
        return ProfileView(
            user_id=user_id,
            username=profile.username if profile else None,
            display_name=display_name(profile, user),
            avatar_url=self.ctx.avatar_url(profile.avatar_handle if profile else None),
            bio=profile.bio if profile else None,
            email=user.email if (include_email and user is not None) else None,
        )

    def _profile_for_update(self, session: Session, user_id: str) -> UserProfileRow:
        profile = session.get(UserProfileRow, user_id)
        if profile is None:
            profile = UserProfileRow(user_id=user_id, updated_at=self.ctx.now_iso())
        return profile

    def get_my_profile(self, user_id: str | None) -> ProfileView | None:
        """Profile of the caller, email included; None for anonymous callers."""
        if not user_id:
            return None
        with self.ctx.db.session() as session:
            return self._view(session, user_id, include_email=True)

    def get_profile(self, user_id: str) -> ProfileView | None:
        with self.ctx.db.session() as session:
            return self._view(session, user_id)

    def get_profile_by_username(self, username: str) -> ProfileView | None:
        """Look a profile up by its (case-insensitive) username."""
        with self.ctx.db.session() as session:
            profile = Repository(session, UserProfileRow).first_by(username=username.strip().lower())
            if profile is None:
                return None
            return self._view(session, profile.user_id)

    def update_username(self, user_id: str | None, username: str) -> str:
        """Set the caller's username.

        Args:
            user_id: Caller
            username: Requested handle; trimmed and stored lowercase

        Returns:
            The stored username

        Raises:
            ValidationFailed: Empty, too long or containing invalid characters
            PreconditionFailed: Already taken by another user
        """
        user_id = require_user(user_id, "update_username")
        username = (username or "").strip()
        if not username:
            raise ValidationFailed("Username cannot be empty")
        if len(username) > settings.max_username_length:
            raise ValidationFailed(
                f"Username must be at most {settings.max_username_length} characters"
            )
        if not USERNAME_PATTERN.match(username):
            raise ValidationFailed(
                "Username can only contain letters, numbers, underscores, and hyphens"
            )
        username = username.lower()

        with self.ctx.db.transaction() as session:
            owner = Repository(session, UserProfileRow).first_by(username=username)
            if owner is not None and owner.user_id != user_id:
                raise PreconditionFailed("Username is already taken")
            profile = self._profile_for_update(session, user_id)
            profile.username = username
            profile.updated_at = self.ctx.now_iso()
            session.add(profile)

        logger.info(f"Username of {user_id} set to {username}")
        return username

    def update_avatar(self, user_id: str | None, handle: str) -> None:
        """Point the caller's avatar at a stored blob, deleting the previous one."""
        user_id = require_user(user_id, "update_avatar")
        if not handle:
            raise ValidationFailed("Avatar handle is required")

        with self.ctx.db.transaction() as session:
            profile = self._profile_for_update(session, user_id)
            previous = profile.avatar_handle
            profile.avatar_handle = handle
            profile.updated_at = self.ctx.now_iso()
            session.add(profile)

        if previous and previous != handle:
            self.ctx.storage.delete(previous)

    def remove_avatar(self, user_id: str | None) -> None:
        user_id = require_user(user_id, "remove_avatar")
        with self.ctx.db.transaction() as session:
            profile = session.get(UserProfileRow, user_id)
            if profile is None or not profile.avatar_handle:
                return
            previous = profile.avatar_handle
            profile.avatar_handle = None
            profile.updated_at = self.ctx.now_iso()
            session.add(profile)
        self.ctx.storage.delete(previous)

    def require_profile(self, user_id: str) -> ProfileView:
        """Like ``get_profile`` but raises NotFound."""
        view = self.get_profile(user_id)
        if view is None:
            raise NotFound("User not found")
        return view


__all__ = [
    "ANONYMOUS",
    "Identity",
    "ProfileService",
    "display_name",
    "load_identities",
]
