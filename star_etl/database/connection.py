"""
Source Database Connection Management

Scoped async engine for the relational OLTP source. The engine is created per
extraction session and disposed on every exit path; there is no module-level
engine or session state.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from star_etl.config.settings import SourceDatabaseSettings
from star_etl.exceptions import SourceUnavailable

logger = structlog.get_logger(__name__)

# Errors that mean the source cannot be reached, as opposed to a bad query
CONNECTIVITY_ERRORS = (OperationalError, InterfaceError, OSError, ConnectionError)


def create_source_engine(settings: SourceDatabaseSettings) -> AsyncEngine:
    """Create the async engine for the source database."""
    return create_async_engine(
        settings.async_url,
        echo=settings.echo,
        pool_pre_ping=True,
        # Drivers handle their own connection pooling internally
        poolclass=NullPool,
    )


async def verify_connection(engine: AsyncEngine, timeout: float) -> None:
    """
    Check the source answers a trivial query within ``timeout`` seconds.

    Raises:
        SourceUnavailable: If the connection cannot be established
    """
    try:
        async with asyncio.timeout(timeout):
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
    except TimeoutError:
        raise SourceUnavailable("*", f"connection not established within {timeout}s") from None
    except CONNECTIVITY_ERRORS as e:
        raise SourceUnavailable("*", str(e)) from e
    except DBAPIError as e:
        if e.connection_invalidated:
            raise SourceUnavailable("*", str(e)) from e
        raise


@asynccontextmanager
async def source_engine(
    settings: SourceDatabaseSettings,
    engine: Optional[AsyncEngine] = None,
) -> AsyncGenerator[AsyncEngine, None]:
    """
    Acquire a verified source engine for the duration of the block.

    An engine passed in by the caller is verified but left for the caller
    to dispose.

    Example:
        async with source_engine(settings.source) as engine:
            async with engine.connect() as conn:
                ...
    """
    owned = engine is None
    engine = engine or create_source_engine(settings)
    try:
        await verify_connection(engine, settings.connect_timeout_seconds)
        logger.info("Source connection established", url=engine.url.render_as_string(hide_password=True))
        yield engine
    finally:
        if owned:
            await engine.dispose()
            logger.debug("Source engine disposed")


async def check_source_health(settings: SourceDatabaseSettings) -> dict:
    """
    Check source database health status.

    Returns:
        dict: Health status with latency information
    """
    start = time.perf_counter()
    try:
        async with source_engine(settings):
            latency_ms = (time.perf_counter() - start) * 1000
        return {"status": "healthy", "latency_ms": round(latency_ms, 2)}
    except SourceUnavailable as e:
        return {"status": "unhealthy", "error": e.reason}
