import asyncio
import logging
from collections.abc import AsyncIterator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ratekeeper.core.config import Settings, get_settings
from ratekeeper.infra.db.models import Base
from ratekeeper.services.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: Settings | None = None) -> AsyncEngine:
    global _engine, _session_factory

    cfg = settings or get_settings()
    _engine = create_async_engine(
        cfg.database_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=cfg.db_pool_size,
        max_overflow=cfg.db_max_overflow,
        pool_timeout=cfg.db_pool_timeout,
        pool_recycle=cfg.db_pool_recycle_seconds,
    )
    _session_factory = async_sessionmaker(
        _engine, autoflush=False, expire_on_commit=False
    )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("Database engine is not initialized")
    return _session_factory


async def close_engine(engine: AsyncEngine) -> None:
    global _engine, _session_factory

    await engine.dispose()
    if engine is _engine:
        _engine = None
        _session_factory = None


async def get_db_session() -> AsyncIterator[AsyncSession]:
    async with get_session_factory()() as session:
        yield session


async def check_connection(
    engine: AsyncEngine,
    retries: int = 3,
    delay_seconds: float = 2.0,
) -> None:
    """Probe the database, retrying a bounded number of times.

    Raises StoreUnavailableError once every attempt has failed.
    """
    last_error: Exception | None = None
    for attempt in range(1, retries + 1):
        logger.info("Connecting to database (attempt %d/%d)", attempt, retries)
        try:
            async with engine.connect() as connection:
                result = await connection.execute(text("SELECT now()"))
                logger.info("Database connection established, server time %s", result.scalar_one())
                return
        except (SQLAlchemyError, OSError) as exc:
            last_error = exc
            logger.warning("Database connection attempt %d failed: %s", attempt, exc)
            if attempt < retries:
                await asyncio.sleep(delay_seconds)

    raise StoreUnavailableError("database unreachable after startup retries") from last_error


async def initialize_database(engine: AsyncEngine, settings: Settings | None = None) -> None:
    cfg = settings or get_settings()
    if not cfg.db_auto_create:
        return

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    logger.info("rate_limits schema ensured")
