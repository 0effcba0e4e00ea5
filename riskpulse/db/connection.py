"""
Database Connection Manager
===========================

Handles the async connection to the riskpulse SQLite database.
"""

from pathlib import Path
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from riskpulse.db.models import Base

DB_DIRNAME = ".riskpulse"
DB_FILENAME = "riskpulse.db"

# Global session maker
_async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None
_engine: Optional[AsyncEngine] = None


def database_path(base_dir: Path) -> Path:
    return Path(base_dir) / DB_DIRNAME / DB_FILENAME


async def init_db(base_dir: Path) -> async_sessionmaker[AsyncSession]:
    """
    Initialize the database connection and create tables if they don't exist.
    The database file is stored in .riskpulse/riskpulse.db within base_dir.
    """
    global _async_session_maker, _engine

    db_path = database_path(base_dir)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    if _engine is not None:
        await _engine.dispose()
    _engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", echo=False)

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    _async_session_maker = async_sessionmaker(_engine, expire_on_commit=False)
    return _async_session_maker


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get the configured session maker."""
    if _async_session_maker is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _async_session_maker


async def close_db() -> None:
    """Dispose of the engine and forget the session maker."""
    global _async_session_maker, _engine
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _async_session_maker = None
