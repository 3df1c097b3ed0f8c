"""Async database engine and connection pool."""

from __future__ import annotations

from typing import Any, ClassVar

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

_IN_MEMORY_SQLITE = ("sqlite+aiosqlite://", "sqlite+aiosqlite:///:memory:")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class Database:
    """Holds the async engine and session pool as class-level state.

    Call Database.init() once at startup. DAOs receive the returned pool
    through their constructors; Database.get_pool() exists for tests and
    one-off scripts.
    """

    _engine: ClassVar[AsyncEngine | None] = None
    _pool: ClassVar[async_sessionmaker[AsyncSession] | None] = None

    @staticmethod
    def init(database_url: str) -> async_sessionmaker[AsyncSession]:
        """Create the async engine and session pool. Returns the pool."""
        kwargs: dict[str, Any] = {"echo": False}
        if database_url in _IN_MEMORY_SQLITE:
            # One shared connection, otherwise every session sees an empty db.
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        elif not database_url.startswith("sqlite"):
            kwargs["pool_pre_ping"] = True
        Database._engine = create_async_engine(database_url, **kwargs)
        Database._pool = async_sessionmaker(Database._engine, expire_on_commit=False)
        return Database._pool

    @staticmethod
    def get_pool() -> async_sessionmaker[AsyncSession]:
        """Return the session pool. Call Database.init() first."""
        assert Database._pool is not None, "call Database.init() first"
        return Database._pool

    @staticmethod
    async def create_tables() -> None:
        """Create all tables from registered models."""
        import vigil_server.models

        _ = vigil_server.models  # registers every table on Base.metadata
        assert Database._engine is not None, "call Database.init() first"
        async with Database._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)

    @staticmethod
    async def close() -> None:
        """Dispose the async engine and release the pool."""
        if Database._engine is not None:
            await Database._engine.dispose()
            Database._engine = None
            Database._pool = None
