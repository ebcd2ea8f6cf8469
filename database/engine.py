"""
Database Persistence Layer - Core Engine.

============================================================
PURPOSE
============================================================
Async SQLAlchemy engine and session management for the alert
engine's stores.

Requirements:
- SQLAlchemy 2.0 async ORM (asyncpg for PostgreSQL,
  aiosqlite for local runs and tests)
- Explicit transaction management
- Hard failures on persistence errors

============================================================
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool


logger = logging.getLogger(__name__)


# =============================================================
# DECLARATIVE BASE
# =============================================================

class Base(DeclarativeBase):
    """Base class for ORM models."""
    pass


# =============================================================
# DATABASE ENGINE
# =============================================================

def create_database_engine(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_recycle: int = 1800,
    echo: bool = False,
) -> AsyncEngine:
    """
    Create an async SQLAlchemy engine.

    Args:
        database_url: SQLAlchemy async URL
        pool_size: Number of connections to keep in pool
        max_overflow: Max connections beyond pool_size
        pool_recycle: Recycle connections after N seconds
        echo: Log SQL statements

    Returns:
        AsyncEngine
    """
    logger.info(f"Creating database engine for: {database_url.split('@')[-1]}")

    if database_url.startswith("sqlite"):
        if ":memory:" in database_url:
            return create_async_engine(
                database_url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_async_engine(database_url, echo=echo)

    return create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_recycle=pool_recycle,
        pool_pre_ping=True,
        echo=echo,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory with expire_on_commit disabled so rows stay readable."""
    return async_sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


# =============================================================
# SESSION MANAGEMENT
# =============================================================

@asynccontextmanager
async def transaction_scope(session_factory: async_sessionmaker) -> AsyncIterator[AsyncSession]:
    """
    Async context manager for explicit transaction boundaries.

    Commits only if no exception occurs.
    Rolls back on ANY exception and re-raises it.

    Usage:
        async with transaction_scope(factory) as session:
            session.add(record)
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database error, rolling back: {e}")
            await session.rollback()
            raise
        except Exception as e:
            logger.error(f"Unexpected error, rolling back: {e}")
            await session.rollback()
            raise


# =============================================================
# SCHEMA
# =============================================================

async def init_db(engine: AsyncEngine) -> None:
    """Create every table that does not exist yet."""
    from . import models  # noqa: F401  registers the tables on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")


async def check_connection(engine: AsyncEngine) -> bool:
    """Return True when a trivial query succeeds."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database connection check failed: {e}")
        return False
