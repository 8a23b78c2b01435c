"""
Database connection management for the gateway's SQL store.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from interop_gateway.database.models import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./interop_gateway.db"


def get_database_url(url: Optional[str] = None) -> str:
    """Get database URL from argument, environment or default."""
    db_url = url or os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL

    # Convert postgresql:// to postgresql+asyncpg:// for async
    if db_url.startswith("postgresql://"):
        db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return db_url


class Database:
    """Owns the async engine and session factory."""

    def __init__(self, url: Optional[str] = None, echo: bool = False):
        self.url = get_database_url(url)
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._engine

    async def init(self) -> None:
        """Create the engine and any missing tables."""
        logger.info("Initializing database connection: %s", self.url.split("@")[-1])

        options = {"echo": self.echo, "pool_pre_ping": True}
        if not self.url.startswith("sqlite"):
            options.update(pool_size=10, max_overflow=20)

        self._engine = create_async_engine(self.url, **options)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("Database initialized successfully")

    async def close(self) -> None:
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database connection closed")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session that commits on success and rolls back on error."""
        if not self._session_factory:
            raise RuntimeError("Database not initialized. Call init() first.")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
