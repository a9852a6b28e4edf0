"""Generic repository pattern for type-safe database operations.

This module provides a Generic Repository[T] implementation for SQLModel
entities. Repositories never commit: they work inside a session opened by
``DatabaseManager.transaction()`` so that a goal change, its outbox entry
and any side rows are written as one unit.

Example:
    >>> from goalbingo.repository import Repository
    >>> from goalbingo.models import BoardRow, GoalRow
    >>>
    >>> with db.transaction() as session:
    ...     boards = Repository[BoardRow](session, BoardRow)
    ...     board = boards.get("b1")
    ...     goals = Repository[GoalRow](session, GoalRow).find_by(
    ...         board_id="b1", order_by="position"
    ...     )
"""

from collections.abc import Sequence
from typing import Any, Generic, TypeVar

from sqlalchemy import func
from sqlmodel import Session, SQLModel, col, select

# =============================================================================
# Type Variables
# =============================================================================

T = TypeVar("T", bound=SQLModel)


# =============================================================================
# Generic Repository
# =============================================================================


class Repository(Generic[T]):
    """Generic repository implementation for SQLModel entities.

    Type Parameter:
        T: SQLModel entity type (BoardRow, GoalRow, EventRow, etc.)

    Args:
        session: SQLModel Session instance
        model: SQLModel class (e.g., BoardRow, GoalRow)

    Example:
        >>> goal_repo = Repository[GoalRow](session, GoalRow)
        >>> goal = goal_repo.get("g1")
        >>> goal.text = "Run a 10k"
        >>> goal_repo.add(goal)
    """

    def __init__(self, session: Session, model: type[T]):
        self.session = session
        self.model = model

    def get(self, entity_id: Any) -> T | None:
        """Get entity by primary key, or None if not found."""
        return self.session.get(self.model, entity_id)

    def _filtered(self, stmt: Any, filters: dict[str, Any]) -> Any:
        for key, value in filters.items():
            if not hasattr(self.model, key):
                raise AttributeError(f"{self.model.__name__} has no column {key!r}")
            column = col(getattr(self.model, key))
            if isinstance(value, (list, tuple, set, frozenset)):
                stmt = stmt.where(column.in_(list(value)))
            elif value is None:
                stmt = stmt.where(column.is_(None))
            else:
                stmt = stmt.where(column == value)
        return stmt

    def find_by(
        self,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        **filters: Any,
    ) -> Sequence[T]:
        """Find entities matching equality filters.

        A list/set value becomes an ``IN`` filter and ``None`` an ``IS NULL``
        filter.

        Args:
            order_by: Column to sort by
            descending: Sort descending instead of ascending
            limit: Maximum number of rows
            **filters: Keyword arguments for filtering (attribute=value)

        Returns:
            Sequence of matching entities

        Example:
            >>> goal_repo.find_by(board_id="b1", order_by="position")
            >>> member_repo.find_by(community_id="c1", user_id=["u1", "u2"])
        """
        stmt = self._filtered(select(self.model), filters)
        if order_by is not None:
            column = col(getattr(self.model, order_by))
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.exec(stmt).all()

    def first_by(self, **filters: Any) -> T | None:
        """Return the first entity matching the filters, or None."""
        stmt = self._filtered(select(self.model), filters).limit(1)
        return self.session.exec(stmt).first()

    def add(self, entity: T) -> T:
        """Stage an entity for insert/update and flush it to the transaction."""
        self.session.add(entity)
        self.session.flush()
        return entity

    def add_all(self, entities: Sequence[T]) -> Sequence[T]:
        """Stage several entities in one flush."""
        self.session.add_all(list(entities))
        self.session.flush()
        return entities

    def delete(self, entity: T) -> None:
        """Delete an entity inside the current transaction."""
        self.session.delete(entity)
        self.session.flush()

    def delete_by(self, **filters: Any) -> int:
        """Delete all entities matching the filters and return how many went."""
        rows = self.find_by(**filters)
        for row in rows:
            self.session.delete(row)
        self.session.flush()
        return len(rows)

    def count(self, **filters: Any) -> int:
        """Count entities matching the filters."""
        stmt = self._filtered(select(func.count()).select_from(self.model), filters)
        return self.session.exec(stmt).one()

    def exists(self, **filters: Any) -> bool:
        """Check if any entity matches the filters."""
        return self.first_by(**filters) is not None


# =============================================================================
# Repository Factory Helper
# =============================================================================


class RepositoryFactory:
    """Factory for creating repositories bound to one session.

    Example:
        >>> repos = RepositoryFactory(session)
        >>> boards = repos.for_entity(BoardRow)
        >>> goals = repos.for_entity(GoalRow)
    """

    def __init__(self, session: Session):
        self.session = session

    def for_entity(self, model: type[T]) -> Repository[T]:
        """Create repository for specific entity type."""
        return Repository(self.session, model)


# =============================================================================
# Export Public API
# =============================================================================

__all__ = ["Repository", "RepositoryFactory"]
