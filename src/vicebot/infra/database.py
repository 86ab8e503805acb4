"""Async database engine and session management.

Incidents live in SQLite by default (``sqlite+aiosqlite``); any async
SQLAlchemy URL works through ``DATABASE_URL``.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from vicebot.app.config import get_settings


class Base(DeclarativeBase):
    """Declarative base for the incident tables."""
    pass


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def make_engine(url: str) -> AsyncEngine:
    """Engine for ``url``; SQLite gets a busy timeout, servers get a small pool."""
    if _is_sqlite(url):
        return create_async_engine(url, connect_args={"check_same_thread": False, "timeout": 30})
    return create_async_engine(url, pool_size=5, max_overflow=10, pool_pre_ping=True)


engine = make_engine(get_settings().database_url)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency: one session per request."""
    async with async_session() as session:
        yield session


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create the incident tables if missing."""
    import vicebot.domain.models  # noqa: F401

    bind = bind or engine
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Dispatch events are written while the API keeps reading
    if bind.dialect.name == "sqlite" and bind.url.database not in (None, "", ":memory:"):
        async with bind.begin() as conn:
            await conn.execute(text("PRAGMA journal_mode=WAL"))
