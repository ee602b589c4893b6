"""
Database session management.
Handles SQLite connection and session lifecycle with async support.
"""
from pathlib import Path
from typing import AsyncGenerator, Optional

from sqlalchemy import event, Engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

from folio_import.app.config import get_settings


@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """
    Enable foreign key constraints for SQLite.
    This is required for proper referential integrity.

    Note: This event listener applies to ALL sync engines (including the one backing async).
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_async_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Create and configure the async database engine.

    Args:
        database_url: sqlite:/// URL (defaults to settings.DATABASE_URL)

    Returns:
        AsyncEngine: SQLAlchemy async engine configured for SQLite with aiosqlite
    """
    db_url = database_url or get_settings().DATABASE_URL

    # Ensure database directory exists
    if db_url.startswith("sqlite:///"):
        db_path = db_url.replace("sqlite:///", "")
        if not db_path.startswith("/"):  # relative path
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    # Convert sqlite:/// to sqlite+aiosqlite:/// for async
    async_db_url = db_url.replace("sqlite:///", "sqlite+aiosqlite:///")

    return create_async_engine(
        async_db_url,
        echo=False,
        # NullPool for SQLite - each connection is independent
        poolclass=NullPool,
        )


async def create_schema(engine: AsyncEngine) -> None:
    """Create every table that does not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


_async_engine: Optional[AsyncEngine] = None


def get_default_engine() -> AsyncEngine:
    """Engine bound to settings.DATABASE_URL, created on first use."""
    global _async_engine
    if _async_engine is None:
        _async_engine = get_async_engine()
    return _async_engine


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Get an async database session for dependency injection.

    Usage in FastAPI:
        @router.post("/")
        async def endpoint(session: AsyncSession = Depends(get_session)):
            result = await session.execute(select(Model))
            ...

    Yields:
        AsyncSession: SQLAlchemy async session
    """
    async with AsyncSession(get_default_engine(), expire_on_commit=False) as session:
        yield session
