"""Tests for Prometheus metrics recorded by the services."""

from goalbingo.metrics import generate_metrics_output, registry


def sample(name: str, **labels: str) -> float:
    return registry.get_sample_value(name, labels) or 0.0


class TestMetrics:
    """Tests for counters incremented by domain operations."""

    def test_goal_transitions(self, app, board_with_goals):
        """Test completing and uncompleting a goal are counted."""
        owner, board, goals = board_with_goals
        completed = sample("goal_transitions_total", transition="completed")
        uncompleted = sample("goal_transitions_total", transition="uncompleted")

        app.goals.set_completed(owner, goals[0].id, True)
        app.goals.set_completed(owner, goals[0].id, False)

        assert sample("goal_transitions_total", transition="completed") == completed + 1
        assert sample("goal_transitions_total", transition="uncompleted") == uncompleted + 1

    def test_feed_requests(self, app, board_with_goals):
        """Test feed reads are counted per scope."""
        owner, board, goals = board_with_goals
        before = sample("feed_requests_total", scope="public")

        app.feed.public_feed(owner)

        assert sample("feed_requests_total", scope="public") == before + 1

    def test_exposition_format(self):
        """Test the registry renders Prometheus text."""
        output = generate_metrics_output().decode("utf-8")

        assert "# TYPE goal_transitions_total counter" in output
        assert "# TYPE outbox_pending gauge" in output
