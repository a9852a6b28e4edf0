"""Unit tests for CLI commands."""

import pytest
import typer
from typer.testing import CliRunner

from goalbingo.app import GoalBingoApp
from goalbingo.cli import app
from goalbingo.config import settings

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Point the CLI at a file database under tmp_path."""
    path = tmp_path / "cli.db"
    monkeypatch.setattr(settings, "database_path", path)
    monkeypatch.setattr(settings, "storage_dir", tmp_path / "blobs")
    return path


def seed(db_path, dispatch_inline=True):
    """Create an opted-in user with one board; returns the user id."""
    bingo = GoalBingoApp(database_path=db_path, dispatch_inline=dispatch_inline).initialize()
    try:
        bingo.db.upsert_user({"id": "ada", "name": "Ada"})
        bingo.communities.toggle_feed_opt_in("ada")
        bingo.boards.create_board("ada", "Seeded", size=3)
    finally:
        bingo.close()
    return "ada"


class TestCLICommands:
    """Tests for CLI commands."""

    def test_cli_app_exists(self):
        """Test CLI app is defined."""
        assert isinstance(app, typer.Typer)

    def test_init_command(self, db_path):
        """Test init creates the database file."""
        result = runner.invoke(app, ["init"])

        assert result.exit_code == 0
        assert "Database created" in result.stdout
        assert db_path.exists()

    def test_init_existing_without_force(self, db_path):
        """Test init leaves an existing database alone."""
        db_path.touch()

        result = runner.invoke(app, ["init"])

        assert result.exit_code == 0
        assert "already exists" in result.stdout
        assert db_path.stat().st_size == 0

    def test_init_force_recreates(self, db_path):
        """Test init --force deletes and recreates the database."""
        seed(db_path)

        result = runner.invoke(app, ["init", "--force"])

        assert result.exit_code == 0
        bingo = GoalBingoApp(database_path=db_path).initialize()
        try:
            assert bingo.db.table_counts()["boards"] == 0
        finally:
            bingo.close()

    def test_status_command(self, db_path):
        """Test status prints configuration and statistics."""
        seed(db_path)

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "Database Statistics" in result.stdout

    def test_drain_command(self, db_path):
        """Test drain applies deferred events."""
        seed(db_path, dispatch_inline=False)

        result = runner.invoke(app, ["drain"])

        assert result.exit_code == 0
        assert "Processed 1 entries" in result.stdout

    def test_worker_command(self, db_path):
        """Test the worker stops after the requested passes."""
        seed(db_path, dispatch_inline=False)

        result = runner.invoke(app, ["worker", "--poll-seconds", "0.01", "--max-cycles", "1"])

        assert result.exit_code == 0
        assert "processing 1 entries" in result.stdout


class TestFeedCommand:
    """Tests for the feed command."""

    def test_public_feed(self, db_path):
        """Test the public feed lists seeded events."""
        user_id = seed(db_path)

        result = runner.invoke(app, ["feed", user_id])

        assert result.exit_code == 0
        assert "Public Feed" in result.stdout

    def test_empty_feed(self, db_path):
        """Test an empty watch feed is reported."""
        user_id = seed(db_path)

        result = runner.invoke(app, ["feed", user_id, "--scope", "watch"])

        assert result.exit_code == 0
        assert "feed is empty" in result.stdout

    def test_community_scope_requires_id(self, db_path):
        """Test the community scope needs --community-id."""
        result = runner.invoke(app, ["feed", "ada", "--scope", "community"])

        assert result.exit_code == 1

    def test_unknown_community(self, db_path):
        """Test domain errors exit with code 1."""
        user_id = seed(db_path)

        result = runner.invoke(app, ["feed", user_id, "--scope", "community", "-c", "missing"])

        assert result.exit_code == 1
        assert "not found" in result.stdout.lower()


class TestMetricsCommand:
    """Tests for the metrics command."""

    def test_metrics_output(self):
        """Test Prometheus text format is printed."""
        result = runner.invoke(app, ["metrics"])

        assert result.exit_code == 0
        assert "goal_transitions_total" in result.stdout
