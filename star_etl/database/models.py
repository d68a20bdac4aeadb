"""
Database Models - OLTP Source Tables

SQLAlchemy table definitions for the normalized source entities. They are
derived from the schema model so the extraction queries, the seeding tools
and the validation rules share one definition of every column.
"""

from typing import Dict

import polars as pl
from sqlalchemy import (
    BigInteger,
    Column,
    Date,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
)
from sqlalchemy.types import TypeEngine

from star_etl.schema.models import SOURCE_SCHEMAS, TableSchema

source_metadata = MetaData()


def sqlalchemy_type(dtype: pl.DataType) -> TypeEngine:
    """Map a schema model polars type to the SQLAlchemy column type."""
    if isinstance(dtype, pl.Decimal):
        return Numeric(dtype.precision, dtype.scale, asdecimal=True)
    if dtype == pl.Int64:
        return BigInteger()
    if dtype.is_integer():
        return Integer()
    if dtype == pl.Date:
        return Date()
    if dtype == pl.Utf8:
        return String(255)
    raise TypeError(f"No SQL type for {dtype}")


def build_table(schema: TableSchema, metadata: MetaData) -> Table:
    """Create the SQLAlchemy Table for a schema model table."""
    return Table(
        schema.name,
        metadata,
        *[
            Column(
                spec.name,
                sqlalchemy_type(spec.dtype),
                primary_key=spec.name in schema.primary_key,
                nullable=spec.nullable and spec.name not in schema.primary_key,
                # natural keys, never generated
                autoincrement=False,
            )
            for spec in schema.columns
        ],
        comment=schema.description or None,
    )


SOURCE_TABLES: Dict[str, Table] = {
    name: build_table(schema, source_metadata) for name, schema in SOURCE_SCHEMAS.items()
}
