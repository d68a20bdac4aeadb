"""
Source Database Module
"""
from .connection import check_source_health, create_source_engine, source_engine
from .models import SOURCE_TABLES, source_metadata
from .seed import create_source_schema, seed_source

__all__ = [
    "check_source_health",
    "create_source_engine",
    "source_engine",
    "SOURCE_TABLES",
    "source_metadata",
    "create_source_schema",
    "seed_source",
]
