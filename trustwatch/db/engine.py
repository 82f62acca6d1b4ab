"""
Database engine, session factory, and declarative base for TrustWatch.

Uses async SQLAlchemy 2.0 (asyncpg in production, aiosqlite in dev/tests).
The engine is owned by a Database object created once by the service, not
held in module globals.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from trustwatch.config import Settings

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for TrustWatch models."""

    pass


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine for the configured URL."""
    url = settings.async_database_url
    if url.startswith("sqlite"):
        kwargs: dict = {"echo": settings.debug}
        if ":memory:" in url:
            # One shared connection, otherwise every session sees an empty DB
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        return create_async_engine(url, **kwargs)
    return create_async_engine(
        url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_recycle=settings.db_pool_recycle,
        echo=settings.debug,
    )


class Database:
    """Owns one engine and its session factory."""

    def __init__(
        self,
        settings: Settings,
        engine: Optional[AsyncEngine] = None,
    ):
        self.settings = settings
        self.engine = engine or build_engine(settings)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide an async database session that commits on success."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init(self) -> None:
        """Create tables in development; production uses migrations."""
        import trustwatch.db.models  # noqa: F401

        if self.settings.environment.lower() in ("development", "test"):
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("tables_created", mode=self.settings.environment)
        else:
            logger.info("skipping_auto_create", reason="production uses alembic")

    async def ping(self) -> None:
        """Round-trip a trivial query. Raises on failure."""
        async with self.session_factory() as session:
            await session.execute(text("SELECT 1"))

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("database_closed")
