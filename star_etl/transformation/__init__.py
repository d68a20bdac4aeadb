"""
Star Schema Transformation Module
"""
from .transformers import LocationConflict, StarSchemaTransformer, TransformResult, transform_sources

__all__ = [
    "LocationConflict",
    "StarSchemaTransformer",
    "TransformResult",
    "transform_sources",
]
