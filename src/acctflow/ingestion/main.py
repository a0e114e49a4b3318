"""acctflow entry point.

Reads ipcad accounting output from stdin (or a file), classifies each
flow and loads it into ClickHouse.

Usage:
    rsh router 'show ip accounting' | acctflow
    acctflow --input accounting.txt --collected 2024-01-01T00:05:00
"""

import argparse
import asyncio
import signal
import sys
from collections.abc import Sequence
from contextlib import ExitStack
from datetime import datetime
from pathlib import Path
from typing import NoReturn

from pydantic import ValidationError

from acctflow import __version__
from acctflow.classification.classifier import Classifier
from acctflow.classification.sources import load_tables
from acctflow.common.config import Settings, get_settings
from acctflow.common.database import check_database_connection, close_database, init_database
from acctflow.common.exceptions import AcctFlowError, ConfigurationError, StorageError
from acctflow.common.logging import bind_context, clear_context, get_logger, setup_logging
from acctflow.common.metrics import set_app_info, start_metrics_server
from acctflow.ingestion.parsers.base import RunContext
from acctflow.ingestion.parsers.ipcad import IpcadParser
from acctflow.ingestion.pipeline import Pipeline, PipelineStats
from acctflow.ingestion.reader import read_lines
from acctflow.storage.writer import BatchWriter, ClickHouseWriter, RetryingWriter, StdoutWriter

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        prog="acctflow",
        description="Load ipcad accounting records into ClickHouse",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Connection, lookup sources and logging are configured through
environment variables or a .env file, e.g.:
  CLICKHOUSE_HOST=ch1 CLICKHOUSE_DATABASE=traffic
  NETWORKS__NETWORKS='{"192.168.0.0/16": "local"}'
  USERS_FILE=/etc/acctflow/users.csv
        """,
    )
    parser.add_argument(
        "-i", "--input",
        type=Path,
        help="Read accounting output from FILE instead of stdin",
    )
    parser.add_argument(
        "--collected",
        type=datetime.fromisoformat,
        help="Collection timestamp for all records (ISO 8601, default: now)",
    )
    parser.add_argument(
        "--queue-size",
        type=int,
        help="Records buffered between reader and writer",
    )
    parser.add_argument(
        "--bunch-size",
        type=int,
        help="Records per ClickHouse insert",
    )
    parser.add_argument(
        "--skip-schema",
        action="store_true",
        help="Do not create tables and views on startup",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print classified records as JSON lines instead of writing",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Apply command line overrides to the pipeline settings.

    Raises:
        ConfigurationError: If an override is invalid.
    """
    overrides = {
        "collected": args.collected,
        "queue_size": args.queue_size,
        "bunch_size": args.bunch_size,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}
    if not overrides:
        return settings

    try:
        pipeline = settings.pipeline.model_validate(
            {**settings.pipeline.model_dump(), **overrides}
        )
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid command line option",
            details={"errors": e.errors(include_url=False)},
            cause=e,
        ) from e

    return settings.model_copy(update={"pipeline": pipeline})


async def main(settings: Settings, args: argparse.Namespace) -> PipelineStats:
    """Run one load from input to storage."""
    context = RunContext.create(settings.pipeline.collected)
    bind_context(collected=context.collected.isoformat())

    logger.info(
        "Starting acctflow",
        version=settings.app_version,
        environment=settings.environment,
        dry_run=args.dry_run,
    )

    tables = await load_tables(settings)

    writer: BatchWriter
    if args.dry_run:
        writer = StdoutWriter()
    else:
        engine = await init_database(settings.storage)
        if not await check_database_connection(engine):
            raise StorageError(
                "ClickHouse is not reachable",
                details={"host": settings.storage.host, "port": settings.storage.port},
            )
        writer = RetryingWriter(
            ClickHouseWriter(engine),
            attempts=settings.pipeline.write_attempts,
            delay=settings.pipeline.retry_delay,
        )
        if not args.skip_schema:
            await writer.ensure_schema()

    pipeline = Pipeline(
        parser=IpcadParser(context, header_token=settings.pipeline.header_token),
        classifier=Classifier(tables),
        writer=writer,
        queue_size=settings.pipeline.queue_size,
        bunch_size=settings.pipeline.bunch_size,
    )

    loop = asyncio.get_running_loop()

    def signal_handler(sig: int) -> None:
        logger.info("Received shutdown signal", signal=sig)
        pipeline.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        with ExitStack() as stack:
            if args.input is not None:
                stream = stack.enter_context(args.input.open("rb"))
            else:
                stream = sys.stdin.buffer
            return await pipeline.run(read_lines(stream))
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        await writer.close()
        await close_database()
        clear_context()


def run(argv: Sequence[str] | None = None) -> NoReturn:
    """Run acctflow as a command line tool."""
    args = build_parser().parse_args(argv)

    try:
        settings = apply_overrides(get_settings(), args)
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)
    except ConfigurationError as e:
        print(f"Error: {e.message}: {e.details}", file=sys.stderr)
        sys.exit(2)

    setup_logging(settings.logging)
    set_app_info(version=settings.app_version, environment=settings.environment)
    if start_metrics_server(settings.metrics.port, settings.metrics.bind_address):
        logger.info("Metrics exporter started", port=settings.metrics.port)

    try:
        asyncio.run(main(settings, args))
        sys.exit(0)
    except KeyboardInterrupt:
        sys.exit(130)
    except AcctFlowError as e:
        logger.error("Run aborted", **e.to_dict())
        sys.exit(1)
    except Exception as e:
        logger.exception("Run failed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    run()
