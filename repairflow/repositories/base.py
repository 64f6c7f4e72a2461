"""Generic async repository over a SQLAlchemy session factory."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from repairflow.db.base import Base

ModelT = TypeVar("ModelT", bound=Base)


def to_db_datetime(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise to UTC before writing; SQLite drops the offset."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_db_datetime(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class BaseRepository(Generic[ModelT]):
    """Generic CRUD helpers. Each call runs in its own short-lived session.

    Subclasses set ``model`` and translate rows to domain objects; nothing
    outside ``repositories/`` ever sees an ORM row.
    """

    model: type[ModelT]

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _base_query(self):
        return select(self.model)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_by_id(self, entity_id: str) -> ModelT | None:
        async with self._session_factory() as session:
            result = await session.execute(
                self._base_query().where(self.model.id == entity_id)
            )
            return result.scalars().first()

    async def list_rows(
        self,
        *,
        order_by: str = "created_at",
        order: str = "desc",
        filters: dict[str, Any] | None = None,
    ) -> list[ModelT]:
        """Return rows matching simple equality filters, ordered."""
        q = self._base_query()

        if filters:
            for col_name, value in filters.items():
                if value is not None and hasattr(self.model, col_name):
                    q = q.where(getattr(self.model, col_name) == value)

        col = getattr(self.model, order_by, None)
        if col is not None:
            q = q.order_by(col.desc() if order == "desc" else col.asc())

        async with self._session_factory() as session:
            items = (await session.execute(q)).scalars().all()
        return list(items)

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def insert(self, *instances: ModelT) -> bool:
        """Add rows in one transaction; False if a primary key already exists."""
        async with self._session_factory() as session:
            session.add_all(instances)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True

    async def update_where(self, *conditions: Any, **values: Any) -> int:
        """Conditional UPDATE; returns the number of rows changed."""
        values.pop("id", None)
        async with self._session_factory() as session:
            result = await session.execute(
                update(self.model).where(*conditions).values(**values)
            )
            await session.commit()
        return result.rowcount or 0
