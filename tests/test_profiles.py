"""Tests for profiles and display-name resolution."""

import pytest

from goalbingo.errors import NotFound, PreconditionFailed, Unauthenticated, ValidationFailed
from goalbingo.models import UserProfileRow, UserRow
from goalbingo.profiles import ANONYMOUS, display_name


class TestDisplayName:
    """Tests for picking a public name."""

    def test_username_wins(self):
        """Test a profile username beats the provider name."""
        profile = UserProfileRow(user_id="u1", username="ada_l", updated_at="x")
        user = UserRow(id="u1", name="Ada Lovelace")

        assert display_name(profile, user) == "ada_l"

    def test_falls_back_to_provider_name(self):
        """Test the provider name is used without a username."""
        profile = UserProfileRow(user_id="u1", updated_at="x")

        assert display_name(profile, UserRow(id="u1", name="Ada")) == "Ada"

    def test_anonymous(self):
        """Test users without any name are anonymous."""
        assert display_name(None, None) == ANONYMOUS
        assert display_name(None, UserRow(id="u1")) == ANONYMOUS


class TestProfileService:
    """Tests for reading and editing profiles."""

    def test_my_profile_includes_email(self, app):
        """Test only the caller's own profile carries the email."""
        app.db.upsert_user({"id": "ada", "name": "Ada", "email": "ada@example.com"})

        mine = app.profiles.get_my_profile("ada")
        public = app.profiles.get_profile("ada")

        assert mine.email == "ada@example.com"
        assert mine.display_name == "Ada"
        assert public.email is None
        assert app.profiles.get_my_profile(None) is None

    def test_unknown_user(self, app):
        """Test unknown users have no profile."""
        assert app.profiles.get_profile("ghost") is None
        with pytest.raises(NotFound):
            app.profiles.require_profile("ghost")

    def test_update_username(self, app, make_user):
        """Test usernames are trimmed, lowercased and searchable."""
        user = make_user("Ada")

        assert app.profiles.update_username(user, "  Ada_L  ") == "ada_l"

        found = app.profiles.get_profile_by_username("ADA_L")
        assert found.user_id == user
        assert found.display_name == "ada_l"

    def test_username_taken(self, app, make_user):
        """Test a username held by another user is rejected."""
        first, second = make_user(), make_user()
        app.profiles.update_username(first, "runner")

        with pytest.raises(PreconditionFailed):
            app.profiles.update_username(second, "Runner")
        assert app.profiles.update_username(first, "runner") == "runner"

    @pytest.mark.parametrize("username", ["", "   ", "has space", "emoji🙂", "x" * 31])
    def test_invalid_username(self, app, make_user, username):
        """Test empty, overly long and malformed usernames are rejected."""
        with pytest.raises(ValidationFailed):
            app.profiles.update_username(make_user(), username)

    def test_anonymous_update(self, app):
        """Test editing a profile requires a caller."""
        with pytest.raises(Unauthenticated):
            app.profiles.update_username(None, "ada")

    def test_avatar_replacement_deletes_previous_blob(self, app, storage, make_user):
        """Test replacing and removing avatars cleans up stored blobs."""
        user = make_user()
        first = storage.put(b"one", "image/png")
        second = storage.put(b"two", "image/png")

        app.profiles.update_avatar(user, first)
        app.profiles.update_avatar(user, second)

        assert storage.deleted == [first]
        assert app.profiles.get_profile(user).avatar_url == f"https://blobs.test/{second}"

        app.profiles.remove_avatar(user)

        assert storage.deleted == [first, second]
        assert app.profiles.get_profile(user).avatar_url is None

    def test_remove_missing_avatar_is_noop(self, app, storage, make_user):
        """Test removing an avatar that was never set does nothing."""
        app.profiles.remove_avatar(make_user())

        assert storage.deleted == []
