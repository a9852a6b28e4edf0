"""Tests for board lifecycle, sharing and community browsing."""

import pytest

from goalbingo.boards import FREE_SPACE_TEXT
from goalbingo.errors import NotFound, PreconditionFailed, Unauthenticated, ValidationFailed
from goalbingo.models import EventKind


class TestCreateBoard:
    """Tests for creating boards."""

    def test_creates_all_goals(self, app, make_user):
        """Test a 5x5 board gets 25 goals with a completed free center."""
        owner = make_user()

        board = app.boards.create_board(owner, "  2025 Goals  ")
        goals = app.goals.list_goals(owner, board.id)

        assert board.name == "2025 Goals"
        assert board.size == 5
        assert board.year == 2025
        assert [g.position for g in goals] == list(range(25))
        free = [g for g in goals if g.is_free_space]
        assert [g.position for g in free] == [12]
        assert free[0].is_completed is True
        assert free[0].text == FREE_SPACE_TEXT
        assert sum(g.is_completed for g in goals) == 1

    def test_goal_texts_skip_free_space(self, app, make_user):
        """Test provided texts fill the non-free positions in order."""
        owner = make_user()

        board = app.boards.create_board(owner, "Small", size=3, goal_texts=["a", "b", "c", "d", "e"])
        texts = [g.text for g in app.goals.list_goals(owner, board.id)]

        assert texts == ["a", "b", "c", "d", FREE_SPACE_TEXT, "e", "", "", ""]

    def test_emits_board_created(self, app, make_user, all_events):
        """Test creation appends board_created."""
        owner = make_user()
        board = app.boards.create_board(owner, "New", size=3, year=2026)

        event = all_events(app)[-1]
        assert event.kind == EventKind.BOARD_CREATED
        assert event.board_id == board.id
        assert event.goal_id is None
        assert board.year == 2026

    @pytest.mark.parametrize("size", [1, 4, 11])
    def test_invalid_size(self, app, make_user, size):
        """Test even and out-of-range sizes are rejected."""
        with pytest.raises(ValidationFailed):
            app.boards.create_board(make_user(), "Bad", size=size)

    @pytest.mark.parametrize("name", ["", "   ", "x" * 101])
    def test_invalid_name(self, app, make_user, name):
        """Test empty and overly long names are rejected."""
        with pytest.raises(ValidationFailed):
            app.boards.create_board(make_user(), name)

    def test_too_many_goal_texts(self, app, make_user):
        """Test more texts than cells is rejected."""
        with pytest.raises(ValidationFailed):
            app.boards.create_board(make_user(), "Full", size=3, goal_texts=["g"] * 9)

    def test_anonymous(self, app):
        """Test creating a board requires a caller."""
        with pytest.raises(Unauthenticated):
            app.boards.create_board(None, "Nope")


class TestReadAndUpdate:
    """Tests for listing, reading, updating and deleting boards."""

    def test_list_boards_with_stats(self, app, clock, make_user):
        """Test listings are newest first with completion percentages."""
        owner = make_user()
        first = app.boards.create_board(owner, "First", size=3)
        clock.advance(minutes=1)
        second = app.boards.create_board(owner, "Second", size=3)
        for goal in app.goals.list_goals(owner, second.id)[:2]:
            app.goals.set_completed(owner, goal.id, True)

        summaries = app.boards.list_boards(owner)

        assert [s.id for s in summaries] == [second.id, first.id]
        assert summaries[0].completed_goals == 3
        assert summaries[0].completion_percent == 25
        assert summaries[1].completion_percent == 0
        assert app.boards.list_boards(None) == []
        assert app.boards.list_boards(owner, year=1999) == []

    def test_get_board_with_goals(self, app, board_with_goals):
        """Test reading a board returns its ordered goals."""
        owner, board, goals = board_with_goals

        detail = app.boards.get_board_with_goals(owner, board.id)

        assert detail.board.id == board.id
        assert [g.position for g in detail.goals] == list(range(9))

    def test_other_users_board_is_not_found(self, app, board_with_goals, make_user):
        """Test boards of other users look missing."""
        owner, board, goals = board_with_goals

        with pytest.raises(NotFound):
            app.boards.get_board(make_user(), board.id)

    def test_update_board(self, app, board_with_goals):
        """Test only provided fields change."""
        owner, board, goals = board_with_goals

        updated = app.boards.update_board(owner, board.id, description="Stretch year", difficulty="Hard")

        assert updated.name == "2025 Goals"
        assert updated.description == "Stretch year"
        assert updated.difficulty == "Hard"
        with pytest.raises(ValidationFailed):
            app.boards.update_board(owner, board.id, name="  ")

    def test_delete_board_cascades(self, app, board_with_goals, make_user):
        """Test deleting removes goals and watch rows."""
        owner, board, goals = board_with_goals
        watcher = make_user()
        app.watched.watch_board(watcher, board.id)

        app.boards.delete_board(owner, board.id)

        counts = app.db.table_counts()
        assert counts["boards"] == 0
        assert counts["goals"] == 0
        assert counts["watches"] == 0
        assert app.watched.get_watched_boards(watcher) == []


class TestSharing:
    """Tests for share links."""

    def test_share_link_is_stable(self, app, board_with_goals):
        """Test generating twice returns the same 12-character token."""
        owner, board, goals = board_with_goals

        share_id = app.boards.generate_share_link(owner, board.id)

        assert len(share_id) == 12
        assert app.boards.generate_share_link(owner, board.id) == share_id

    def test_shared_board_is_public(self, app, board_with_goals):
        """Test anyone holding the token can read the board."""
        owner, board, goals = board_with_goals
        share_id = app.boards.generate_share_link(owner, board.id)

        detail = app.boards.get_shared_board(share_id)

        assert detail.board.id == board.id
        assert detail.owner_name == "Ada"
        assert len(detail.goals) == 9

    def test_removed_share_link(self, app, board_with_goals):
        """Test removing the link revokes access."""
        owner, board, goals = board_with_goals
        share_id = app.boards.generate_share_link(owner, board.id)

        app.boards.remove_share_link(owner, board.id)

        with pytest.raises(NotFound):
            app.boards.get_shared_board(share_id)
        assert app.boards.generate_share_link(owner, board.id) != share_id


class TestCommunityBoards:
    """Tests for browsing boards of opted-in users."""

    def test_lists_other_opted_in_boards(self, app, board_with_goals, make_user):
        """Test the viewer sees other opted-in users' boards with owner names."""
        owner, board, goals = board_with_goals
        viewer = make_user("Viewer")
        app.boards.create_board(viewer, "Mine", size=3)
        hidden = make_user("Hidden", opted_in=False)
        app.boards.create_board(hidden, "Secret", size=3)

        boards = app.boards.get_community_boards(viewer)

        assert [(b.name, b.owner_name) for b in boards] == [("2025 Goals", "Ada")]

    def test_viewer_must_be_opted_in(self, app, board_with_goals, make_user):
        """Test viewers outside the public feed get nothing."""
        assert app.boards.get_community_boards(make_user(opted_in=False)) == []

    def test_board_detail_requires_opted_in_owner(self, app, board_with_goals, make_user):
        """Test reading a community board depends on its owner's opt-in."""
        owner, board, goals = board_with_goals
        viewer = make_user()

        assert app.boards.get_community_board_with_goals(viewer, board.id).owner_name == "Ada"

        app.communities.toggle_feed_opt_in(owner)
        with pytest.raises(PreconditionFailed):
            app.boards.get_community_board_with_goals(viewer, board.id)
        with pytest.raises(NotFound):
            app.boards.get_community_board_with_goals(viewer, "missing")
