"""
Source Database Seeding

Creates the OLTP source tables and bulk-inserts rows. Used by the developer
seeding script and by the integration tests.
"""

from typing import Any, Dict, List, Mapping

import structlog
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncEngine

from .models import SOURCE_TABLES, source_metadata

logger = structlog.get_logger(__name__)

# Parents before children so foreign-key-enforcing databases accept the rows
LOAD_ORDER = ["productlines", "products", "customers", "orders", "orderdetails"]


async def create_source_schema(engine: AsyncEngine, drop_existing: bool = False) -> None:
    """Create the source tables"""
    async with engine.begin() as conn:
        if drop_existing:
            await conn.run_sync(source_metadata.drop_all)
        await conn.run_sync(source_metadata.create_all)


async def execute_batch_insert(
    engine: AsyncEngine,
    table_name: str,
    records: List[Dict[str, Any]],
    chunk_size: int = 1000,
) -> int:
    """Insert records into a source table in chunks"""
    if not records:
        return 0

    table = SOURCE_TABLES[table_name]
    async with engine.begin() as conn:
        for i in range(0, len(records), chunk_size):
            await conn.execute(insert(table), records[i:i + chunk_size])

    logger.info("Inserted source records", table=table_name, records=len(records))
    return len(records)


async def seed_source(engine: AsyncEngine, data: Mapping[str, List[Dict[str, Any]]]) -> Dict[str, int]:
    """Create the schema and load every entity present in ``data``"""
    await create_source_schema(engine)
    counts = {}
    for name in LOAD_ORDER:
        if name in data:
            counts[name] = await execute_batch_insert(engine, name, list(data[name]))
    return counts
