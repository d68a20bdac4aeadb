"""
Star Schema Pipeline Orchestrator

Sequences extraction -> transformation -> load for one full-refresh run:
- one run at a time per output location (run lock)
- bounded, backed-off retries of extraction when the source is unavailable
- cancellation honoured between stages, discarding staged output
- a structured RunReport for every outcome
- a catalog refresh signal after a successful publish
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import polars as pl
import structlog
from pydantic import BaseModel, Field
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from star_etl.config.logging import run_context
from star_etl.config.settings import Settings, get_settings
from star_etl.exceptions import RunCancelled, SourceUnavailable, StarETLError
from star_etl.extraction.extractor import SourceExtractor
from star_etl.loading.lock import RunLock
from star_etl.loading.writer import SnapshotWriter, new_run_id
from star_etl.transformation.transformers import StarSchemaTransformer, TransformResult

from .catalog import CatalogNotifier, LoggingCatalogNotifier
from .metrics import record_run

logger = structlog.get_logger(__name__)

# Referential gap records copied into the report; the counts cover all of them
GAP_SAMPLE_SIZE = 20


class RunStatus(str, Enum):
    """Outcome of a pipeline run"""
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"


class RunReport(BaseModel):
    """Structured outcome of a pipeline run"""
    run_id: str
    status: RunStatus = RunStatus.FAILURE
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0
    extract_attempts: int = 0
    rows_written: Dict[str, int] = Field(default_factory=dict)
    rows_skipped: Dict[str, int] = Field(default_factory=dict)
    referential_gaps: Dict[str, int] = Field(default_factory=dict)
    referential_gap_samples: List[Dict[str, Any]] = Field(default_factory=list)
    location_conflicts: List[Dict[str, Any]] = Field(default_factory=list)
    locations: Dict[str, str] = Field(default_factory=dict)
    error: Optional[Dict[str, Any]] = None

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCESS

    def record_transform(self, result: TransformResult) -> None:
        self.rows_written = result.rows_written
        self.rows_skipped = result.rows_skipped
        self.referential_gaps = result.gap_counts()
        self.referential_gap_samples = [g.to_dict() for g in result.referential_gaps[:GAP_SAMPLE_SIZE]]
        self.location_conflicts = [c.to_dict() for c in result.location_conflicts]


class StarSchemaPipeline:
    """
    Full-refresh ETL run from the OLTP source to the published star schema.

    Example:
        pipeline = StarSchemaPipeline(settings)
        report = await pipeline.run()
        if not report.succeeded:
            ...
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        extractor_factory: Optional[Callable[[], SourceExtractor]] = None,
        transformer: Optional[StarSchemaTransformer] = None,
        writer: Optional[SnapshotWriter] = None,
        notifier: Optional[CatalogNotifier] = None,
    ):
        self.settings = settings or get_settings()
        self.extractor_factory = extractor_factory or (lambda: SourceExtractor(self.settings))
        self.transformer = transformer or StarSchemaTransformer(
            strict_locations=self.settings.pipeline.strict_locations,
        )
        self.writer = writer or SnapshotWriter(settings=self.settings)
        self.notifier = notifier or LoggingCatalogNotifier()

    @staticmethod
    def _checkpoint(cancel_event: Optional[asyncio.Event], stage: str, lock: RunLock) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelled(stage)
        lock.refresh()

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        logger.warning(
            "Source unavailable, retrying extraction",
            attempt=retry_state.attempt_number,
            error=str(retry_state.outcome.exception()),
            sleep_seconds=retry_state.next_action.sleep if retry_state.next_action else 0,
        )

    async def _extract(self, report: RunReport) -> Dict[str, pl.DataFrame]:
        config = self.settings.pipeline
        retrying = AsyncRetrying(
            stop=stop_after_attempt(config.extract_max_attempts),
            wait=wait_exponential(
                multiplier=config.retry_backoff_seconds,
                max=config.retry_backoff_max_seconds,
            ),
            retry=retry_if_exception_type(SourceUnavailable),
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                report.extract_attempts = attempt.retry_state.attempt_number
                async with self.extractor_factory() as extractor:
                    return await extractor.extract_all()

    def _publish(
        self,
        run_id: str,
        result: TransformResult,
        cancel_event: Optional[asyncio.Event],
        lock: RunLock,
    ) -> Dict[str, str]:
        with self.writer.begin(run_id) as txn:
            for name, df in result.tables.items():
                self._checkpoint(cancel_event, f"stage:{name}", lock)
                txn.stage(name, df)
            self._checkpoint(cancel_event, "publish", lock)
            return txn.commit()

    async def _execute(self, report: RunReport, cancel_event: Optional[asyncio.Event]) -> None:
        lock = RunLock(
            self.writer.lock_path,
            stale_after=self.settings.pipeline.lock_stale_seconds,
            owner=report.run_id,
        )
        with lock:
            self.writer.discard_stale_staging()

            self._checkpoint(cancel_event, "extract", lock)
            sources = await self._extract(report)

            self._checkpoint(cancel_event, "transform", lock)
            result = await asyncio.to_thread(self.transformer.transform, sources)
            report.record_transform(result)

            self._checkpoint(cancel_event, "load", lock)
            report.locations = self._publish(report.run_id, result, cancel_event, lock)
            report.status = RunStatus.SUCCESS

    async def run(
        self,
        cancel_event: Optional[asyncio.Event] = None,
        run_id: Optional[str] = None,
    ) -> RunReport:
        """
        Execute one pipeline run.

        Args:
            cancel_event: When set, the run stops at the next stage boundary
            run_id: Explicit run identifier (generated when omitted)

        Returns:
            RunReport; failures in the error taxonomy are reported, not raised.
            Unexpected exceptions are reported and re-raised.
        """
        run_id = run_id or new_run_id()
        report = RunReport(run_id=run_id, started_at=datetime.utcnow())

        with run_context(run_id):
            logger.info("Starting star schema run", output=str(self.writer.base_path))
            try:
                await self._execute(report, cancel_event)
            except RunCancelled as e:
                report.status = RunStatus.CANCELLED
                report.error = e.to_dict()
                logger.warning("Run cancelled", stage=e.stage)
            except StarETLError as e:
                report.status = RunStatus.FAILURE
                report.error = e.to_dict()
                logger.error("Run failed", error_type=type(e).__name__, error=e.message)
            except asyncio.CancelledError:
                report.status = RunStatus.CANCELLED
                report.error = {"type": "CancelledError", "message": "run task cancelled", "details": {}}
                logger.warning("Run task cancelled")
                raise
            except Exception as e:
                report.status = RunStatus.FAILURE
                report.error = {"type": type(e).__name__, "message": str(e), "details": {}}
                logger.exception("Run failed unexpectedly")
                raise
            finally:
                report.completed_at = datetime.utcnow()
                report.duration_seconds = (report.completed_at - report.started_at).total_seconds()
                record_run(report)
                logger.info(
                    "Star schema run finished",
                    status=report.status.value,
                    rows_written=report.rows_written,
                    rows_skipped=report.rows_skipped,
                    duration_seconds=report.duration_seconds,
                )

            if report.succeeded:
                self.notifier.notify(report)
        return report


async def run_pipeline(
    settings: Optional[Settings] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> RunReport:
    """Run the pipeline once with default collaborators"""
    return await StarSchemaPipeline(settings).run(cancel_event=cancel_event)
