"""Pytest configuration and shared fixtures for Goal Bingo tests."""

import os
import sys
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from typing import Any

os.environ.setdefault("ENVIRONMENT", "testing")

import pytest
from loguru import logger

from goalbingo.app import GoalBingoApp
from goalbingo.models import DifficultyRanking, EventRow, GoalExtraction
from goalbingo.repository import Repository


# =============================================================================
# Test Configuration
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """Configure loguru for tests to avoid I/O errors."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="ERROR",
        format="{time} {level} {message}",
        catch=True,
    )
    yield
    logger.remove()


@pytest.fixture(scope="function", autouse=True)
def reset_loguru():
    """Reset loguru handlers before each test."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="ERROR",
        format="{time} {level} {message}",
        catch=True,
    )
    yield
    logger.remove()


# =============================================================================
# Collaborator Doubles
# =============================================================================


class FrozenClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: Any) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class InMemoryObjectStorage:
    """Object storage keeping blobs in a dict."""

    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self.deleted: list[str] = []

    def put(self, data: bytes, content_type: str | None = None) -> str:
        handle = f"blob{len(self.blobs) + len(self.deleted) + 1}"
        self.blobs[handle] = data
        return handle

    def get_url(self, handle: str) -> str | None:
        return f"https://blobs.test/{handle}" if handle in self.blobs else None

    def delete(self, handle: str) -> None:
        self.blobs.pop(handle, None)
        self.deleted.append(handle)


class StubInferenceClient:
    """Inference client returning canned results and recording calls."""

    def __init__(self):
        self.ranking = DifficultyRanking(ranking="Hard: lots of travel.", difficulty="Hard")
        self.extraction = GoalExtraction(success=True, goals=["Run a 10k", "Learn piano"])
        self.ranked: list[list[str]] = []
        self.images: list[str] = []
        self.closed = False

    async def rank_difficulty(self, goals):
        self.ranked.append(list(goals))
        return self.ranking

    async def extract_goals_from_image(self, image_url):
        self.images.append(image_url)
        return self.extraction

    async def close(self):
        self.closed = True


# =============================================================================
# Application Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FrozenClock:
    """Clock frozen at 2025-01-15 12:00 UTC."""
    return FrozenClock(datetime(2025, 1, 15, 12, 0, 0, tzinfo=UTC))


@pytest.fixture
def storage() -> InMemoryObjectStorage:
    return InMemoryObjectStorage()


@pytest.fixture
def inference() -> StubInferenceClient:
    return StubInferenceClient()


@pytest.fixture
def app(clock, storage, inference) -> Generator[GoalBingoApp, None, None]:
    """Application on a private in-memory database with inline dispatch."""
    bingo = GoalBingoApp(
        database_path=":memory:",
        storage=storage,
        clock=clock,
        dispatch_inline=True,
        inference_client=inference,
    )
    bingo.initialize()
    yield bingo
    bingo.close()


@pytest.fixture
def deferred_app(clock, storage, inference) -> Generator[GoalBingoApp, None, None]:
    """Application whose events wait in the outbox until drained."""
    bingo = GoalBingoApp(
        database_path=":memory:",
        storage=storage,
        clock=clock,
        dispatch_inline=False,
        inference_client=inference,
    )
    bingo.initialize()
    yield bingo
    bingo.close()


@pytest.fixture
def make_user(app):
    """Factory creating users, opted in to the public feed unless told otherwise."""
    counter = {"n": 0}

    def _make(name: str | None = None, opted_in: bool = True, target: GoalBingoApp | None = None) -> str:
        bingo = target or app
        counter["n"] += 1
        user_id = f"user{counter['n']}"
        bingo.db.upsert_user({"id": user_id, "name": name or f"User {counter['n']}"})
        if opted_in:
            bingo.communities.toggle_feed_opt_in(user_id)
        return user_id

    return _make


@pytest.fixture
def board_with_goals(app, make_user):
    """A 3x3 board owned by an opted-in user, with goals keyed by position."""
    owner = make_user("Ada")
    board = app.boards.create_board(
        owner, "2025 Goals", size=3, goal_texts=[f"Goal {i}" for i in range(8)]
    )
    goals = {g.position: g for g in app.goals.list_goals(owner, board.id)}
    return owner, board, goals


@pytest.fixture
def five_by_five_board(app, make_user):
    """A full 5x5 board (free space at 12) owned by an opted-in user."""
    owner = make_user("Grace")
    board = app.boards.create_board(
        owner, "Big Year", size=5, goal_texts=[f"Goal {i}" for i in range(24)]
    )
    goals = {g.position: g for g in app.goals.list_goals(owner, board.id)}
    return owner, board, goals


@pytest.fixture
def all_events():
    """Read every event of an app in append order, voided ones included."""

    def _read(bingo: GoalBingoApp) -> list[EventRow]:
        with bingo.db.session() as session:
            return list(Repository(session, EventRow).find_by(order_by="id"))

    return _read
