# database.py - Async database setup
import logging

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker

from config import Settings

logger = logging.getLogger("kanban.database")


def enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    """SQLite ignores ON DELETE rules unless foreign keys are switched on per connection"""
    if engine.url.get_backend_name() != "sqlite":
        return

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_engine(settings: Settings) -> AsyncEngine:
    """Create async engine with connection pooling"""
    kwargs = {"echo": settings.sql_echo, "pool_pre_ping": True}
    if not settings.database_url.startswith("sqlite"):
        kwargs.update(pool_size=20, max_overflow=0, pool_recycle=3600)
    engine = create_async_engine(settings.database_url, **kwargs)
    enable_sqlite_foreign_keys(engine)
    return engine


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def get_db_session(request: Request):
    """Dependency for getting database session (FastAPI Depends)"""
    async with request.app.state.session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(engine: AsyncEngine):
    """Create any missing tables (migrations remain the source of truth in production)"""
    from models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database initialized")


async def close_db(engine: AsyncEngine):
    """Close database connection pool"""
    await engine.dispose()

