"""
Pipeline Orchestration Module
"""
from .catalog import CallbackCatalogNotifier, CatalogNotifier, LoggingCatalogNotifier
from .pipeline import RunReport, RunStatus, StarSchemaPipeline, run_pipeline

__all__ = [
    "CallbackCatalogNotifier",
    "CatalogNotifier",
    "LoggingCatalogNotifier",
    "RunReport",
    "RunStatus",
    "StarSchemaPipeline",
    "run_pipeline",
]
