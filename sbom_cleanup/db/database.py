"""Async SQLAlchemy 2.0 engine + session factory."""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from sbom_cleanup.config import Settings, get_settings
from sbom_cleanup.core.logging import get_logger, redact_connection_string

logger = get_logger(__name__)


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def make_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with dialect-specific configuration.

    - PostgreSQL (asyncpg): small pool with pre-ping
    - SQLite (aiosqlite): check_same_thread=False, no pool sizing
    """
    connect_args: dict = {}
    kwargs: dict = {
        "echo": echo,
        "pool_pre_ping": True,
    }

    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    elif database_url.startswith("postgresql"):
        kwargs["pool_size"] = 5
        kwargs["max_overflow"] = 5

    kwargs["connect_args"] = connect_args
    return create_async_engine(database_url, **kwargs)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_engine(settings: Settings | None = None) -> AsyncEngine:
    """Return the process-wide engine, creating it on first use."""
    global _engine
    if _engine is None:
        settings = settings or get_settings()
        _engine = make_engine(settings.effective_database_url, echo=settings.database_echo)
    return _engine


def get_session_factory(settings: Settings | None = None) -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = make_session_factory(get_engine(settings))
    return _session_factory


async def dispose_engine() -> None:
    """Dispose the process-wide engine (shutdown and tests)."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def verify_database_connection(settings: Settings | None = None) -> bool:
    """Check that the store answers a trivial query."""
    settings = settings or get_settings()
    try:
        async with get_engine(settings).connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as exc:
        logger.warning(
            "Database connection check failed",
            data={
                "database_url": redact_connection_string(settings.effective_database_url),
                "error": str(exc),
            },
        )
        return False
