"""
Database connection management and session handling.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
    AsyncEngine,
)

from .config import Settings, get_settings
from .models.base import Base

logger = logging.getLogger(__name__)


def create_database_engine(settings: Optional[Settings] = None, **engine_kwargs) -> AsyncEngine:
    """Create and configure the database engine with connection pooling."""
    settings = settings or get_settings()

    options = {"echo": settings.debug, "pool_pre_ping": True}
    if not settings.database_url.startswith("sqlite"):
        # Connection pool configuration for concurrent access
        options.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_recycle=3600,
        )
    options.update(engine_kwargs)

    return create_async_engine(settings.database_url, **options)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create session factory for database sessions."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=True,
    )


class DatabaseManager:
    """Owns the engine and hands out one transactional session per unit of work."""

    def __init__(self, engine: Optional[AsyncEngine] = None):
        self.engine: AsyncEngine | None = engine
        self.session_factory: async_sessionmaker[AsyncSession] | None = (
            create_session_factory(engine) if engine is not None else None
        )

    async def initialize(self, create_tables: bool = True) -> None:
        """Initialize the database manager."""
        if self.engine is None:
            self.engine = create_database_engine()
            self.session_factory = create_session_factory(self.engine)

        if create_tables:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        logger.info("Database manager initialized")

    async def close(self) -> None:
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()
            logger.info("Database manager closed")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get a session whose transaction commits on success and rolls back on error.

        Usage:
            async with db.session() as session:
                result = await session.execute(query)
        """
        if self.session_factory is None:
            raise RuntimeError("Database manager not initialized")

        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
