"""
Pipeline Metrics

Prometheus metrics for star schema runs. A batch run is too short-lived to be
scraped, so the CLI can write the registry to a node-exporter textfile after
the run (MONITORING_METRICS_TEXTFILE).
"""

from typing import TYPE_CHECKING

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, write_to_textfile

if TYPE_CHECKING:
    from .pipeline import RunReport


# =============================================================================
# METRICS
# =============================================================================

RUNS_TOTAL = Counter(
    "star_etl_runs_total",
    "Star schema runs by outcome",
    ["status"],
)

RUN_DURATION = Histogram(
    "star_etl_run_duration_seconds",
    "Wall-clock duration of star schema runs",
    ["status"],
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1800, 3600),
)

EXTRACT_ATTEMPTS = Counter(
    "star_etl_extract_attempts_total",
    "Extraction attempts, retries included",
)

ROWS_WRITTEN = Gauge(
    "star_etl_rows_written",
    "Rows in the last published snapshot",
    ["table"],
)

ROWS_SKIPPED = Counter(
    "star_etl_rows_skipped_total",
    "Source rows excluded for unresolved references",
    ["table"],
)

LAST_SUCCESS = Gauge(
    "star_etl_last_success_timestamp_seconds",
    "Completion time of the last successful run",
)


def record_run(report: "RunReport") -> None:
    """Update the metrics from a finished run"""
    status = report.status.value
    RUNS_TOTAL.labels(status=status).inc()
    RUN_DURATION.labels(status=status).observe(report.duration_seconds)
    EXTRACT_ATTEMPTS.inc(report.extract_attempts)

    if report.succeeded:
        for table, rows in report.rows_written.items():
            ROWS_WRITTEN.labels(table=table).set(rows)
        for table, rows in report.rows_skipped.items():
            ROWS_SKIPPED.labels(table=table).inc(rows)
        LAST_SUCCESS.set_to_current_time()


def write_metrics(path: str) -> None:
    """Write the default registry in Prometheus text format"""
    write_to_textfile(path, REGISTRY)
