"""
Logging Configuration for the Retail Star Schema ETL

structlog on top of stdlib logging. Records from libraries (SQLAlchemy, prefect,
tenacity) go through the same renderer as the pipeline's own events, and every
event logged during a run carries the run's id.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator, List, Optional

import structlog
from structlog.processors import JSONRenderer, TimeStamper
from structlog.stdlib import ProcessorFormatter, add_log_level
from structlog.typing import Processor

from star_etl.config.settings import Settings, get_settings

# Libraries that log every statement or request at INFO
NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio")


def _shared_processors() -> List[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_log_level,
        TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(log_format: str) -> Processor:
    if log_format == "json":
        return JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(log_level: Optional[str] = None, settings: Optional[Settings] = None) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR)
        settings: Settings to read the level and format from
    """
    settings = settings or get_settings()
    level = (log_level or settings.monitoring.log_level).upper()
    numeric_level = getattr(logging, level, logging.INFO)
    processors = _shared_processors()

    structlog.configure(
        processors=processors + [ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # stdout is reserved for the run report
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ProcessorFormatter(
        processor=_renderer(settings.monitoring.log_format),
        foreign_pre_chain=processors,
    ))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(numeric_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    structlog.get_logger(__name__).debug(
        "Logging configured",
        level=level,
        format=settings.monitoring.log_format,
        environment=settings.app_env,
    )


@contextmanager
def run_context(run_id: str) -> Iterator[None]:
    """Tag every event logged inside the block with ``run_id``."""
    with structlog.contextvars.bound_contextvars(run_id=run_id):
        yield
