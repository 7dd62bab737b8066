"""Async engine and session management for the trade journal.

PostgreSQL runs through asyncpg; local and test databases use SQLite via
aiosqlite. Plain ``postgresql://`` URLs are upgraded to the async driver.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from smart_money_copytrader.storage.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from smart_money_copytrader.config import DatabaseSettings

logger = logging.getLogger(__name__)


def _async_url(database_url: str) -> str:
    if database_url.startswith("postgresql://"):
        logger.warning("Upgrading 'postgresql://' database URL to the asyncpg driver")
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def create_async_db_engine(database_url: str, **kwargs: Any) -> AsyncEngine:
    """Create the async engine for a journal database.

    SQLite has no sized connection pool, so pool options are ignored there.
    """
    url = _async_url(database_url)
    if url.startswith("sqlite"):
        kwargs.pop("pool_size", None)
        kwargs.pop("max_overflow", None)
    return create_async_engine(url, **kwargs)


def create_async_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


async def init_async_db(engine: AsyncEngine) -> None:
    """Create the positions, signals, wallet_scores and daily_stats tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Journal schema ready (%d tables)", len(Base.metadata.tables))


class DatabaseManager:
    """Owns the journal engine and hands out transactional sessions.

    The engine is created lazily on first use, so constructing a manager
    never touches the database.

    Example:
        ```python
        manager = DatabaseManager.from_settings(settings.database)
        async with manager.get_async_session() as session:
            await PositionRepository(session).upsert(dto)
        ```
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
    ) -> None:
        self.database_url = database_url
        self._engine_options: dict[str, Any] = {
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        }
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def from_settings(cls, settings: DatabaseSettings) -> DatabaseManager:
        """Build a manager from DATABASE_* settings.

        Raises:
            ValueError: If no DATABASE_URL is configured.
        """
        if not settings.url:
            raise ValueError("DATABASE_URL is not configured")
        return cls(
            settings.url,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            echo=settings.echo,
        )

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_db_engine(self.database_url, **self._engine_options)
        return self._engine

    @asynccontextmanager
    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session that commits on success and rolls back on error."""
        if self._session_factory is None:
            self._session_factory = create_async_session_factory(self.engine)

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init_schema_async(self) -> None:
        await init_async_db(self.engine)

    async def dispose_async(self) -> None:
        """Close pooled connections; the next session reconnects."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Journal database connections closed")
