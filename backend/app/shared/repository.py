"""
Base repository with common data access operations.

Feature repositories inherit from BaseRepository and add their own
queries. All methods are async and work on a shared AsyncSession;
committing is left to the caller unless a method says otherwise.

Usage:
    class SyncStateRepository(BaseRepository[SyncState]):
        def __init__(self, db: AsyncSession):
            super().__init__(db, SyncState)
"""

from typing import TypeVar, Generic, Type

from sqlalchemy import select, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """
    Base repository for database operations.

    Provides lookups by arbitrary columns, create/update, counting and
    dialect-aware INSERT ... ON CONFLICT construction for upserts.
    """

    def __init__(self, db: AsyncSession, model: Type[T]):
        self.db = db
        self.model = model

    def _filtered(self, query, **kwargs):
        for key, value in kwargs.items():
            query = query.where(getattr(self.model, key) == value)
        return query

    async def get_by(self, **kwargs) -> T | None:
        """
        Get single entity by field values.

        Args:
            **kwargs: Field name-value pairs to filter by

        Returns:
            Matching entity or None
        """
        result = await self.db.execute(self._filtered(select(self.model), **kwargs))
        return result.scalar_one_or_none()

    async def create(self, **kwargs) -> T:
        """
        Create new entity and flush it so generated columns are populated.
        """
        entity = self.model(**kwargs)
        self.db.add(entity)
        await self.db.flush()
        return entity

    async def update(self, entity: T, **kwargs) -> T:
        """Set fields on an entity and flush."""
        for key, value in kwargs.items():
            setattr(entity, key, value)
        await self.db.flush()
        return entity

    async def count(self, **kwargs) -> int:
        """Count entities matching the given field values."""
        query = self._filtered(select(func.count()).select_from(self.model), **kwargs)
        result = await self.db.execute(query)
        return result.scalar() or 0

    def insert(self):
        """
        Dialect-specific INSERT for the model's table.

        Both supported dialects expose on_conflict_do_update(), which
        gives row-level upsert-by-unique-key in a single statement.

        Raises:
            NotImplementedError: If the bound database is neither
                PostgreSQL nor SQLite
        """
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(self.model)
        if dialect == "sqlite":
            return sqlite.insert(self.model)
        raise NotImplementedError(f"Upsert not supported for dialect {dialect}")
