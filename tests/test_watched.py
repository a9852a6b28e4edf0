"""Tests for the watch list."""

import pytest

from goalbingo.errors import NotFound, PreconditionFailed, Unauthenticated


class TestWatchService:
    """Tests for watching and unwatching boards."""

    def test_watch_and_unwatch(self, app, board_with_goals, make_user):
        """Test a watch is added once and can be removed."""
        owner, board, goals = board_with_goals
        watcher = make_user()

        assert app.watched.watch_board(watcher, board.id) is True
        assert app.watched.watch_board(watcher, board.id) is False
        assert app.watched.is_watching(watcher, board.id) is True
        assert app.watched.watched_board_ids(watcher) == [board.id]

        assert app.watched.unwatch_board(watcher, board.id) is True
        assert app.watched.unwatch_board(watcher, board.id) is False
        assert app.watched.is_watching(watcher, board.id) is False

    def test_cannot_watch_own_board(self, app, board_with_goals):
        """Test owners cannot watch their own boards."""
        owner, board, goals = board_with_goals

        with pytest.raises(PreconditionFailed):
            app.watched.watch_board(owner, board.id)

    def test_missing_board(self, app, make_user):
        """Test watching an unknown board raises NotFound."""
        with pytest.raises(NotFound):
            app.watched.watch_board(make_user(), "missing")

    def test_anonymous(self, app, board_with_goals):
        """Test anonymous callers cannot watch and are never watching."""
        owner, board, goals = board_with_goals

        with pytest.raises(Unauthenticated):
            app.watched.watch_board(None, board.id)
        assert app.watched.is_watching(None, board.id) is False
        assert app.watched.get_watched_boards(None) == []

    def test_watched_boards_listing(self, app, clock, board_with_goals, make_user):
        """Test watched boards come back newest watch first with owner names."""
        owner, board, goals = board_with_goals
        other = make_user("Grace")
        second = app.boards.create_board(other, "Grace's Goals", size=3)
        watcher = make_user()

        app.watched.watch_board(watcher, board.id)
        clock.advance(minutes=1)
        app.watched.watch_board(watcher, second.id)

        boards = app.watched.get_watched_boards(watcher)

        assert [(b.name, b.owner_name) for b in boards] == [
            ("Grace's Goals", "Grace"),
            ("2025 Goals", "Ada"),
        ]
        assert boards[1].total_goals == 9
