"""SQLAlchemy async engine and session management.

Provides a factory for creating async engines backed by asyncpg,
an async context manager for scoped sessions, a transaction opener with an
explicit isolation level, and lifecycle helpers for schema creation and
graceful shutdown.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from treetracker_admin.core.config import DatabaseConfig
from treetracker_admin.core.enums import IsolationLevel

from .models import Base

logger = logging.getLogger(__name__)


def create_engine(
    url: str,
    *,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    echo: bool = False,
    use_null_pool: bool = False,
) -> AsyncEngine:
    """Create and return a new SQLAlchemy :class:`AsyncEngine`.

    Args:
        url: Database connection URL. Must use the ``postgresql+asyncpg://``
            scheme.
        pool_size: Number of persistent connections to keep in the pool.
        max_overflow: Maximum additional connections beyond *pool_size*.
        pool_timeout: Seconds to wait for a connection from the pool before
            raising a timeout error.
        pool_recycle: Seconds after which a connection is recycled to avoid
            stale TCP connections.
        echo: If ``True``, log all emitted SQL statements.
        use_null_pool: If ``True``, disable connection pooling entirely.
            Useful in short-lived processes (tests, one-off scripts).

    Returns:
        A configured :class:`AsyncEngine` instance.
    """
    pool_kwargs: dict = {}
    if use_null_pool:
        pool_kwargs["poolclass"] = NullPool
    else:
        pool_kwargs.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
        )

    engine = create_async_engine(
        url,
        echo=echo,
        **pool_kwargs,
    )
    logger.info("Created async engine for %s (pool_size=%s)", url.split("@")[-1], pool_size)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_database(
    config: DatabaseConfig,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Build the engine and session factory described by *config*.

    Tables are created when ``config.create_tables`` is set (dev/test).
    """
    engine = create_engine(
        config.url,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        echo=config.echo,
    )
    if config.create_tables:
        await create_all(engine)
    return engine, create_session_factory(engine)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables defined in the ORM metadata."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created / verified.")


async def dispose(engine: AsyncEngine) -> None:
    """Dispose of *engine* and release all pooled connections."""
    await engine.dispose()
    logger.info("Engine disposed.")


@asynccontextmanager
async def get_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Yield an async session scoped to the caller's block.

    Usage::

        async with get_session(factory) as session:
            result = await session.execute(select(TreeRecord))
            ...

    The session is committed on successful exit and rolled back on
    exception. It is always closed afterwards.
    """
    session = session_factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def begin_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED,
) -> AsyncSession:
    """Open a session whose connection runs at *isolation_level*.

    The caller owns the session: it must ``commit()`` or ``rollback()`` and
    then ``close()`` it.
    """
    session = session_factory()
    try:
        await session.connection(
            execution_options={"isolation_level": isolation_level.value},
        )
    except Exception:
        await session.close()
        raise
    return session
