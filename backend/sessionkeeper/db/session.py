"""Async SQLAlchemy engine and session helpers.

Provides the declarative ``Base`` and factories for an async engine and
sessionmaker. Nothing is connected at import time; the application builds
the engine from settings during startup and hands the sessionmaker to the
SQL stores.
"""

import asyncio

from core.logging import logger
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def create_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """Create the async engine for ``database_url``.

    Connection pool sizing only applies to server databases; SQLite URLs get
    SQLAlchemy's default pool.
    """
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)
    return create_async_engine(
        database_url, echo=echo, pool_size=5, max_overflow=10, pool_pre_ping=True
    )


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def initialize_database(engine: AsyncEngine, *, max_retries: int = 5):
    """Create metadata tables, retrying while the database comes up.

    Args:
        engine: Engine to initialize.
        max_retries: Attempts before giving up.

    Raises:
        Exception: Re-raises the last error once retries are exhausted.
    """

    # NOTE: models must be imported so their tables are registered on Base.
    import models.auth  # noqa: F401

    for attempt in range(max_retries):
        try:
            logger.info("Initializing database tables if not exist")
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database initialization complete")
            return
        except Exception as e:
            # NOTE: transient DB connectivity issues are retried to improve
            # startup robustness when services come up concurrently.
            if attempt < max_retries - 1:
                logger.warning(
                    "Database connection attempt {} failed: {}. Retrying..",
                    attempt + 1,
                    e,
                )
                await asyncio.sleep(2)
            else:
                logger.exception(
                    "Failed to create database tables after {} attempts", max_retries
                )
                raise

