"""Async SQLAlchemy engine for ClickHouse.

Uses the clickhouse-sqlalchemy dialect with the asynch native-protocol
driver. One engine per process, created on first use.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from acctflow.common.config import StorageSettings, get_settings
from acctflow.common.logging import get_logger

logger = get_logger(__name__)

_engine: AsyncEngine | None = None


def create_engine(storage: StorageSettings | None = None) -> AsyncEngine:
    """Create an async engine for the configured ClickHouse server.

    A run writes from a single task, so the pool holds one connection.
    """
    if storage is None:
        storage = get_settings().storage

    logger.info(
        "Connecting to ClickHouse",
        host=storage.host,
        port=storage.port,
        database=storage.database,
        user=storage.user,
        secure=storage.secure,
    )

    return create_async_engine(
        storage.async_url,
        echo=storage.echo,
        pool_size=1,
        max_overflow=0,
        pool_pre_ping=True,
        connect_args={
            "connect_timeout": storage.connect_timeout,
            "secure": storage.secure,
        },
    )


async def init_database(storage: StorageSettings | None = None) -> AsyncEngine:
    """Return the process engine, creating it on first call."""
    global _engine

    if _engine is None:
        _engine = create_engine(storage)
    return _engine


async def close_database() -> None:
    """Dispose of the process engine, if any."""
    global _engine

    if _engine is not None:
        await _engine.dispose()
        _engine = None


async def check_database_connection(engine: AsyncEngine) -> bool:
    """Run a trivial query to verify ClickHouse is reachable.

    Returns:
        True if the query succeeded.
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("ClickHouse health check failed", error=str(e))
        return False
    return True
