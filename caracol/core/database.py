"""
Database connection and session management.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from caracol.core.config import settings
from caracol.core.logging import get_logger

logger = get_logger(__name__)

# Base class for database models
Base = declarative_base()


class Database:
    """
    Lazily created async engine plus a session factory.

    The engine is only built on first use so that commands which never touch
    the database do not need a reachable server or driver configuration.
    """

    def __init__(self, url: Optional[str] = None, engine: Optional[AsyncEngine] = None, echo: bool = False):
        self.url = url or settings.database_url
        self.echo = echo
        self._engine = engine
        self._session_factory = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            kwargs = {}
            if self.url.startswith("postgresql"):
                kwargs.update(
                    pool_size=settings.DB_POOL_SIZE,
                    max_overflow=settings.DB_MAX_OVERFLOW,
                    pool_recycle=3600,  # Recycle connections after 1 hour
                    connect_args={
                        "command_timeout": 30,
                        "server_settings": {"application_name": settings.APP_NAME},
                    },
                )
            self._engine = create_async_engine(self.url, echo=self.echo, **kwargs)
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._session_factory

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Yield a session inside a single transaction.

        The transaction commits when the block exits normally and rolls back on
        any exception, including task cancellation, so a write either fully
        lands or leaves no trace.
        """
        async with self.session_factory() as session:
            async with session.begin():
                yield session

    async def create_all(self) -> None:
        """Create tables directly from the models (local development and tests)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            logger.debug("Database engine disposed")
