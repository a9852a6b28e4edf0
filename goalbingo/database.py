"""Database management for Goal Bingo.

This module provides SQLite database management with:
- Connection management with WAL mode
- Transaction scopes that commit on success and roll back on error
- Index creation for feed and outbox queries
- Identity upserts for the authentication collaborator

Example:
    >>> from goalbingo.database import DatabaseManager
    >>>
    >>> db = DatabaseManager()
    >>> db.initialize()
    >>> with db.transaction() as session:
    ...     session.add(board)
    >>> db.close()
"""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import func, text
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, col, create_engine, select

from goalbingo import models
from goalbingo.config import settings
from goalbingo.logging import logger
from goalbingo.utils import format_iso, parse_datetime, utc_now_iso

INDEX_STATEMENTS = (
    "CREATE INDEX IF NOT EXISTS idx_event_created ON eventrow(created_at DESC, id DESC)",
    "CREATE INDEX IF NOT EXISTS idx_event_goal_recent ON eventrow(goal_id, id DESC)",
    "CREATE INDEX IF NOT EXISTS idx_event_user_created ON eventrow(user_id, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_event_board_created ON eventrow(board_id, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_goal_board_position ON goalrow(board_id, position)",
    "CREATE INDEX IF NOT EXISTS idx_outbox_pending ON outboxrow(processed_at, id)",
    "CREATE INDEX IF NOT EXISTS idx_board_user_year ON boardrow(user_id, year)",
)

COUNTED_TABLES = {
    "users": models.UserRow,
    "boards": models.BoardRow,
    "goals": models.GoalRow,
    "events": models.EventRow,
    "reactions": models.ReactionRow,
    "comments": models.CommentRow,
    "opt_ins": models.FeedOptInRow,
    "communities": models.CommunityRow,
    "watches": models.WatchedBoardRow,
}


# =============================================================================
# Database Manager
# =============================================================================


class DatabaseManager:
    """Manages the SQLite engine and transaction scopes.

    Args:
        database_path: Path to SQLite database file (defaults to settings.database_path).
            ``:memory:`` keeps everything in a single shared in-memory connection.

    Example:
        >>> db = DatabaseManager()
        >>> db.initialize()
        >>> with db.transaction() as session:
        ...     session.add(GoalRow(...))
        >>> with db.session() as session:
        ...     session.exec(select(GoalRow)).all()
        >>> db.close()
    """

    def __init__(self, database_path: Path | str | None = None):
        self.database_path = Path(database_path) if database_path else settings.database_path
        self.engine = None

    @property
    def in_memory(self) -> bool:
        return str(self.database_path) == ":memory:"

    def initialize(self) -> None:
        """Initialize database engine and create tables.

        This method:
        1. Creates the database file (and parent directory) if missing
        2. Creates all tables from SQLModel metadata
        3. Enables WAL mode and tunes PRAGMA settings (file databases only)
        4. Creates indexes for feed and outbox queries
        """
        if self.in_memory:
            self.engine = create_engine(
                "sqlite://",
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(
                f"sqlite:///{self.database_path}",
                echo=False,
                connect_args={"check_same_thread": False},
            )

        SQLModel.metadata.create_all(self.engine)

        if not self.in_memory:
            with self.engine.connect() as conn:
                conn.exec_driver_sql("PRAGMA journal_mode = WAL;")
                conn.exec_driver_sql("PRAGMA synchronous = NORMAL;")
                conn.exec_driver_sql("PRAGMA cache_size = -64000;")  # 64MB cache
                conn.exec_driver_sql("PRAGMA temp_store = MEMORY;")
                conn.commit()

        self.create_indexes()
        logger.info(f"✅ Database initialized at {self.database_path}")

    def create_indexes(self) -> None:
        """Create composite indexes the ORM metadata does not declare."""
        if self.engine is None:
            raise RuntimeError("Database not initialized")

        with self.engine.connect() as conn:
            for statement in INDEX_STATEMENTS:
                conn.execute(text(statement))
            conn.commit()

        logger.debug("✅ Database indexes created")

    def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    # =========================================================================
    # Session Scopes
    # =========================================================================

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Open a read session; nothing is committed."""
        if self.engine is None:
            raise RuntimeError("Database not initialized")
        with Session(self.engine, expire_on_commit=False) as session:
            yield session

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Open a unit of work that commits on success and rolls back on error.

        Example:
            >>> with db.transaction() as session:
            ...     goal.is_completed = True
            ...     session.add(goal)
            ...     outbox.enqueue_append(session, draft)
        """
        if self.engine is None:
            raise RuntimeError("Database not initialized")
        with Session(self.engine, expire_on_commit=False) as session:
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    # =========================================================================
    # Identity Operations
    # =========================================================================

    def upsert_user(self, user_data: dict[str, Any]) -> models.UserRow:
        """Insert or update a user record from the identity provider.

        Args:
            user_data: User data dictionary with keys: id, name, email, created_at

        Returns:
            Inserted or updated UserRow

        Example:
            >>> user = db.upsert_user({"id": "u1", "name": "Ada", "email": "ada@example.com"})
        """
        processed = {**user_data}
        if processed.get("created_at"):
            processed["created_at"] = format_iso(parse_datetime(processed["created_at"]))

        with self.transaction() as session:
            existing = session.get(models.UserRow, processed["id"])
            if existing:
                for key, value in processed.items():
                    setattr(existing, key, value)
                user_row = existing
            else:
                processed.setdefault("created_at", utc_now_iso())
                user_row = models.UserRow(**processed)
            session.add(user_row)
        return user_row

    # =========================================================================
    # Statistics
    # =========================================================================

    def table_counts(self) -> dict[str, int]:
        """Row counts per table, for status output."""
        counts: dict[str, int] = {}
        with self.session() as session:
            for label, model in COUNTED_TABLES.items():
                counts[label] = session.exec(select(func.count()).select_from(model)).one()
            counts["pending_outbox"] = session.exec(
                select(func.count())
                .select_from(models.OutboxRow)
                .where(col(models.OutboxRow.processed_at).is_(None))
            ).one()
        return counts


# =============================================================================
# Export Public API
# =============================================================================

__all__ = ["DatabaseManager"]
