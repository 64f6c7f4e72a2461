"""Async SQLAlchemy engine, session factory, declarative Base, and schema bootstrap."""


from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from repairflow.core.config import settings

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    engine_kwargs: dict = {"pool_pre_ping": True, "echo": echo}
    # SQLite (local dev) doesn't support connection pooling parameters
    if database_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    return create_async_engine(database_url, **engine_kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


engine = build_engine(settings.database_url, echo=settings.app_env == "development")

# ---------------------------------------------------------------------------
# Session factory
# ---------------------------------------------------------------------------
async_session_factory = build_session_factory(engine)

# ---------------------------------------------------------------------------
# Declarative Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """All ORM models inherit from this base."""

# ---------------------------------------------------------------------------
# Schema bootstrap (local dev / tests; production uses Alembic)
# ---------------------------------------------------------------------------
async def create_schema(bind: AsyncEngine) -> None:
    """Create every table registered on ``Base.metadata``."""
    import repairflow.db.models  # noqa: F401  (register tables)

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
