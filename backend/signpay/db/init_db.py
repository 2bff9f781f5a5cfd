"""
Database Initialization

Creates the SQLite tables (merchants, orders) and provides the async
session dependency used by the API.
"""
import asyncio
import logging
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from ..config import settings
from .models import Base

logger = logging.getLogger(__name__)


# ============================================================================
# SQLAlchemy Async Session Setup for FastAPI
# ============================================================================

DATABASE_URL = f"sqlite+aiosqlite:///{settings.database_path}"
engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    future=True,
    connect_args={
        "timeout": 30,  # seconds to wait on a locked database
        "check_same_thread": False
    },
    pool_pre_ping=True,
    pool_recycle=3600
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def initialize_database() -> None:
    """
    Create all tables and switch SQLite to WAL mode.

    Called during FastAPI startup; safe to run repeatedly.
    """
    db_path = Path(settings.database_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    logger.info(f"Initializing database at: {db_path}")

    async with engine.begin() as conn:
        # WAL keeps readers from blocking the single writer
        await conn.execute(text("PRAGMA journal_mode=WAL"))
        await conn.execute(text("PRAGMA synchronous=NORMAL"))
        await conn.run_sync(Base.metadata.create_all)

    logger.info(f"Database initialized successfully at {db_path}")


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database sessions in FastAPI.

    Usage:
        @router.get("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


# Alias for FastAPI Depends
get_db = get_async_session


def main():
    """CLI entry point for initializing database."""
    logging.basicConfig(level=getattr(logging, settings.log_level))
    asyncio.run(initialize_database())


if __name__ == "__main__":
    main()
