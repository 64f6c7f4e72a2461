"""Database package: async SQLAlchemy engine, session factory, Base."""
from repairflow.db.base import Base, async_session_factory, build_engine, build_session_factory, create_schema, engine

__all__ = [
    "Base",
    "async_session_factory",
    "build_engine",
    "build_session_factory",
    "create_schema",
    "engine",
]
