"""Async database client and session management.

Uses SQLAlchemy 2.0 async with the asyncpg driver.
Graceful degradation: if PostgreSQL is unavailable, callers fall back to the in-memory store.
"""

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)


class Database:
    """Owns one engine and session factory between connect() and close()."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self.engine: AsyncEngine | None = None
        self.session_factory: async_sessionmaker[AsyncSession] | None = None

    async def connect(self) -> bool:
        """Create the engine and tables. Returns True on success."""
        from videocache.models import Base

        self.engine = create_async_engine(
            self.url,
            echo=self.echo,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
        )
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database initialized successfully")
            return True
        except Exception as e:
            logger.warning("Database unavailable — continuing without persistence: %s", str(e)[:200])
            await self.close()
            return False

    def session(self) -> AsyncSession:
        if self.session_factory is None:
            raise RuntimeError("Database is not connected")
        return self.session_factory()

    async def close(self) -> None:
        """Dispose engine connections on shutdown."""
        if self.engine is not None:
            await self.engine.dispose()
            logger.info("Database connections closed")
        self.engine = None
        self.session_factory = None
