"""Base repository pattern implementation for async SQLAlchemy.

Provides the session handling and CRUD operations shared by every
repository.
"""

import asyncio
from collections.abc import Mapping
from typing import Any, Generic, TypeVar

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from story_mirror.db.models import Base

# Generic type variable for model classes
ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Base repository with common async session handling.

    Usage:
        class ServerRepository(BaseRepository[Server]):
            def __init__(self, session: AsyncSession) -> None:
                super().__init__(session, Server)

            async def get_by_name(self, name: str) -> Server | None:
                return await self._get_by_field("name", name)

    Concurrency:
        Repositories sharing a session can share a write_lock so flushes
        issued from different coroutines are serialized.
    """

    def __init__(
        self,
        session: AsyncSession,
        model_class: type[ModelT],
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        """Initialize the repository with a session.

        Args:
            session: Async SQLAlchemy session (caller manages lifecycle)
            model_class: The SQLAlchemy model class this repository manages
            write_lock: Optional lock to serialize write operations (shared across repos)
        """
        self._session = session
        self._model_class = model_class
        self._write_lock = write_lock

    @property
    def session(self) -> AsyncSession:
        """Access the underlying session."""
        return self._session

    # -------------------------------------------------------------------------
    # Common Read Operations
    # -------------------------------------------------------------------------

    async def get_by_id(self, id: int) -> ModelT | None:
        """Get an entity by its primary key ID.

        Args:
            id: Primary key ID

        Returns:
            Entity or None if not found
        """
        return await self._session.get(self._model_class, id)

    async def _get_by_field(self, field_name: str, value: object) -> ModelT | None:
        """Get an entity by a specific field value.

        Args:
            field_name: Name of the model field
            value: Value to match

        Returns:
            First matching entity or None
        """
        stmt = select(self._model_class).where(getattr(self._model_class, field_name) == value)
        result = await self._session.execute(stmt)
        return result.scalars().first()

    def _select_where(self, criteria: Mapping[str, Any] | None = None) -> Select[tuple[ModelT]]:
        """Build a SELECT filtered by column criteria.

        List and tuple values match any of their items; everything else is
        compared for equality.
        """
        stmt = select(self._model_class)
        for name, value in (criteria or {}).items():
            column = getattr(self._model_class, name)
            if isinstance(value, list | tuple | set):
                stmt = stmt.where(column.in_(list(value)))
            elif value is None:
                stmt = stmt.where(column.is_(None))
            else:
                stmt = stmt.where(column == value)
        return stmt.order_by(self._model_class.id)  # type: ignore[attr-defined]

    async def get_where(self, criteria: Mapping[str, Any] | None = None) -> list[ModelT]:
        """Get all entities matching column criteria, ordered by ID."""
        result = await self._session.execute(self._select_where(criteria))
        return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Common Write Operations
    # -------------------------------------------------------------------------

    def add(self, entity: ModelT) -> ModelT:
        """Add an entity to the session (does not flush).

        Args:
            entity: Entity to add

        Returns:
            The same entity (for chaining)
        """
        self._session.add(entity)
        return entity

    async def flush(self) -> None:
        """Flush pending changes to the database.

        If a write_lock was provided, acquires it to serialize flushes.
        """
        if self._write_lock:
            async with self._write_lock:
                await self._session.flush()
        else:
            await self._session.flush()

