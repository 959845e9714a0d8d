"""
config/database.py
Async SQLAlchemy engine, session factory, and base model.

PostgreSQL (asyncpg) in production. Any async dialect is accepted; SQLite
URLs skip the connection pool sizing, which the sqlite pools do not support.
"""

from typing import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from config.settings import settings


def build_engine(url: str, **overrides) -> AsyncEngine:
    """Create an async engine with the pool settings that fit the dialect."""
    options = {"echo": settings.DEBUG}
    if make_url(url).get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_timeout=settings.DATABASE_POOL_TIMEOUT,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
    options.update(overrides)
    return create_async_engine(url, **options)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    # Loaded attributes stay usable after commit; services commit mid-request.
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False, autoflush=False)


def sync_database_url(url: str = None) -> str:
    """Same database for the celery workers, through the psycopg2 driver."""
    return (url or settings.DATABASE_URL).replace("+asyncpg", "+psycopg2")


engine = build_engine(settings.DATABASE_URL)
AsyncSessionLocal = make_session_factory(engine)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency: one session per request.
    Commits when the route returns, rolls back and re-raises on any error,
    so a ServiceError raised mid-route leaves nothing half written.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(bind: AsyncEngine = None) -> None:
    """Create missing tables (accounts, vendor profiles, bookings, logs, notifications)."""
    import shared.models.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
