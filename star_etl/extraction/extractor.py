"""
Source Extractor

Thin boundary between the relational OLTP source and the transformation
engine. For each named source entity it checks the live table against the
schema model and reads the entity's full row set into a typed DataFrame.
No transformation logic happens here.
"""

import asyncio
from typing import Dict, Iterable, List, Optional

import polars as pl
import structlog
from sqlalchemy import inspect, select
from sqlalchemy.exc import DBAPIError, NoSuchTableError
from sqlalchemy.ext.asyncio import AsyncEngine

from star_etl.config.settings import Settings, get_settings
from star_etl.database.connection import CONNECTIVITY_ERRORS, source_engine
from star_etl.database.models import SOURCE_TABLES
from star_etl.exceptions import SchemaMismatch, SourceUnavailable
from star_etl.schema.models import SOURCE_ENTITIES, SOURCE_SCHEMAS
from star_etl.schema.validators import Violation

logger = structlog.get_logger(__name__)


class SourceExtractor:
    """
    Reads source entities from the OLTP database.

    The extractor is an async context manager: the engine is acquired on
    entry and released on every exit path.

    Example:
        async with SourceExtractor(settings) as extractor:
            sources = await extractor.extract_all()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        engine: Optional[AsyncEngine] = None,
    ):
        self.settings = settings or get_settings()
        self.timeout = self.settings.source.query_timeout_seconds
        self._external_engine = engine
        self._engine: Optional[AsyncEngine] = None
        self._scope = None

    async def __aenter__(self) -> "SourceExtractor":
        self._scope = source_engine(self.settings.source, self._external_engine)
        self._engine = await self._scope.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        scope, self._scope, self._engine = self._scope, None, None
        if scope is not None:
            await scope.__aexit__(exc_type, exc, tb)

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("SourceExtractor used outside 'async with'")
        return self._engine

    async def _live_columns(self, entity: str) -> List[str]:
        def columns(sync_conn) -> List[str]:
            return [c["name"] for c in inspect(sync_conn).get_columns(entity)]

        async with self.engine.connect() as conn:
            return await conn.run_sync(columns)

    async def _read(self, entity: str) -> pl.DataFrame:
        schema = SOURCE_SCHEMAS[entity]
        table = SOURCE_TABLES[entity]

        try:
            live = await self._live_columns(entity)
        except NoSuchTableError:
            raise SchemaMismatch(entity, [Violation(entity, None, f"table '{entity}' does not exist")]) from None

        # Extra columns are tolerated; only the declared ones are read
        missing = [name for name in schema.column_names if name not in live]
        if missing:
            raise SchemaMismatch(
                entity,
                [Violation(entity, None, f"missing column '{name}'", column=name) for name in missing],
            )

        # Primary key order gives a stable extraction order
        query = select(*table.columns).order_by(*table.primary_key.columns)
        async with self.engine.connect() as conn:
            result = await conn.execute(query)
            rows = result.mappings().all()

        try:
            return pl.DataFrame([dict(row) for row in rows], schema=schema.polars_schema)
        except (TypeError, ValueError, pl.exceptions.PolarsError) as e:
            raise SchemaMismatch(
                entity, [Violation(entity, None, f"values do not fit declared types: {e}")]
            ) from e

    async def extract(self, entity: str) -> pl.DataFrame:
        """
        Extract the full row set of a source entity.

        Args:
            entity: Source entity name (customers, products, ...)

        Returns:
            DataFrame with exactly the entity's declared columns

        Raises:
            SourceUnavailable: Connection failure or timeout
            SchemaMismatch: Table or columns do not match the schema model
        """
        if entity not in SOURCE_SCHEMAS:
            raise ValueError(f"Unknown source entity: {entity}")

        log = logger.bind(entity=entity)
        log.debug("Extracting source entity")
        try:
            async with asyncio.timeout(self.timeout):
                df = await self._read(entity)
        except TimeoutError:
            raise SourceUnavailable(entity, f"extraction timed out after {self.timeout}s") from None
        except CONNECTIVITY_ERRORS as e:
            raise SourceUnavailable(entity, str(e)) from e
        except DBAPIError as e:
            if e.connection_invalidated:
                raise SourceUnavailable(entity, str(e)) from e
            raise

        log.info("Extracted source entity", rows=df.height)
        return df

    async def extract_all(self, entities: Iterable[str] = SOURCE_ENTITIES) -> Dict[str, pl.DataFrame]:
        """
        Extract several entities concurrently.

        All extractions must complete before this returns; the first failure
        cancels the remaining ones and is raised.
        """
        entities = list(entities)
        tasks = [asyncio.ensure_future(self.extract(name)) for name in entities]
        try:
            frames = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return dict(zip(entities, frames))
