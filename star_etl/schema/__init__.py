"""
Schema Model Module
"""
from .models import (
    SOURCE_ENTITIES,
    SOURCE_SCHEMAS,
    TARGET_SCHEMAS,
    TARGET_TABLES,
    ColumnSpec,
    TableSchema,
    get_schema,
)
from .validators import (
    ReferentialGap,
    SchemaValidator,
    ValidationResult,
    Violation,
    create_validator,
    validate,
)

__all__ = [
    "SOURCE_ENTITIES",
    "SOURCE_SCHEMAS",
    "TARGET_SCHEMAS",
    "TARGET_TABLES",
    "ColumnSpec",
    "TableSchema",
    "get_schema",
    "ReferentialGap",
    "SchemaValidator",
    "ValidationResult",
    "Violation",
    "create_validator",
    "validate",
]
