"""
Command Line Entry Point

Runs one full-refresh star schema build and prints the run report as JSON.
Exit status is 0 on success, 1 on failure and 2 when the run was cancelled.
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

import structlog

from star_etl.config.logging import configure_logging
from star_etl.config.settings import get_settings
from star_etl.orchestration.metrics import write_metrics
from star_etl.orchestration.pipeline import RunStatus, StarSchemaPipeline

logger = structlog.get_logger(__name__)

EXIT_CODES = {
    RunStatus.SUCCESS: 0,
    RunStatus.FAILURE: 1,
    RunStatus.CANCELLED: 2,
}


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="star-etl",
        description="Build the retail star schema from the OLTP source",
    )
    parser.add_argument("--output-path", help="Published star schema root (overrides DATA_OUTPUT_PATH)")
    parser.add_argument("--source-url", help="Source database URL (overrides SOURCE_DB_URL)")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--metrics-textfile", help="Write Prometheus metrics here after the run")
    parser.add_argument(
        "--strict-locations",
        action="store_true",
        help="Fail when customers disagree on a postal code's location",
    )
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings().model_copy(deep=True)
    if args.output_path:
        settings.data_lake.output_path = args.output_path
    if args.source_url:
        settings.source.url = args.source_url
    if args.strict_locations:
        settings.pipeline.strict_locations = True

    # SIGINT/SIGTERM stop the run at the next stage boundary
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel_event.set)
        except NotImplementedError:
            pass

    report = await StarSchemaPipeline(settings).run(cancel_event=cancel_event)
    print(report.model_dump_json(indent=2))

    metrics_path = args.metrics_textfile or settings.monitoring.metrics_textfile
    if metrics_path:
        write_metrics(metrics_path)
    return EXIT_CODES[report.status]


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
