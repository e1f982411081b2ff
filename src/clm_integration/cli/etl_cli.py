"""
Command-line interface for the CLM integration pipeline.

Usage:
    clm-etl ingest --source <source_system> --entity <contract|customer> --input <file.json> [options]
    clm-etl status --session-id <session_id> [options]
    clm-etl route --input <message.json> [options]
    clm-etl init-db [options]
    clm-etl cleanup [--retention-days <days>] [options]
    clm-etl metrics [--port <port>]
"""

import argparse
import json
import os
import sys
import time
from pathlib import Path
from typing import Any

from clm_integration.config.settings import Settings, load_settings
from clm_integration.core.errors import ClmError
from clm_integration.core.models import IngestionSession, SessionStatus, StagingStatus
from clm_integration.observability.logger import get_logger, setup_logger
from clm_integration.observability.metrics import generate_metrics, start_metrics_server
from clm_integration.service import ClmIntegrationService
from clm_integration.warehouse.connection import DatabaseConnectionPool
from clm_integration.warehouse.memory import InMemoryRepository
from clm_integration.warehouse.schema_mgmt import SchemaManager

logger = get_logger(__name__)


def read_json(path: str) -> Any:
    input_path = Path(path)
    if not input_path.exists():
        logger.error(f"Input file not found: {path}")
        sys.exit(1)
    with open(input_path) as f:
        return json.load(f)


def build_settings(args) -> Settings:
    """
    Load settings and apply database arguments given on the command line.

    Args:
        args: Command-line arguments
    """
    settings = load_settings(args.config)
    overrides = {
        "host": args.db_host,
        "port": args.db_port,
        "name": args.db_name,
        "user": args.db_user,
        "password": args.db_password,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}
    database = settings.database.model_copy(update=overrides)
    return settings.model_copy(update={"database": database})


def build_service(args, settings: Settings) -> ClmIntegrationService:
    if args.in_memory:
        logger.info("IN-MEMORY MODE: nothing is written to the database")
        return ClmIntegrationService(InMemoryRepository(), settings)
    return ClmIntegrationService.from_settings(settings)


def print_session(session: IngestionSession, show_rejections: bool = True) -> None:
    print(f"\n{'=' * 60}")
    print(f"SESSION {session.session_id}")
    print(f"{'=' * 60}\n")
    print(f"  Source system:   {session.source_system}")
    print(f"  Entity kind:     {session.entity_kind.value}")
    print(f"  Status:          {session.status.value}")
    print(f"  Received:        {session.counts.received}")
    print(f"  Staged:          {session.counts.staged}")
    print(f"  Validated:       {session.counts.validated}")
    print(f"  Promoted:        {session.counts.promoted}")
    print(f"  Failed:          {session.counts.failed}")
    if session.error_message:
        print(f"  Error:           {session.error_message}")

    rejected = [o for o in session.outcomes if o.status is StagingStatus.REJECTED]
    if show_rejections and rejected:
        print(f"\n{'Seq':<6} {'Natural key':<30} {'Code':<24} {'Field':<16} {'Message'}")
        print(f"{'-' * 100}")
        for outcome in sorted(rejected, key=lambda o: o.sequence):
            result = outcome.result
            print(
                f"{outcome.sequence:<6} {outcome.natural_key:<30} "
                f"{result.error_code or '-':<24} {result.field_name or '-':<16} {result.error_message or ''}"
            )
    print(f"\n{'=' * 60}\n")


def ingest_command(args):
    """
    Run one batch of records through a new ingestion session.

    Args:
        args: Command-line arguments
    """
    records = read_json(args.input)
    if isinstance(records, dict):
        records = records.get("records")
    if not isinstance(records, list):
        logger.error("Input must be a JSON list of records or an object with a 'records' list")
        sys.exit(1)

    logger.info(f"Ingesting {len(records)} {args.entity} records from {args.source}")
    settings = build_settings(args)

    try:
        with build_service(args, settings) as service:
            session_id = service.open_session(args.source, args.entity, records)
            session = service.get_session_status(session_id)
    except (ClmError, ValueError) as e:
        logger.error(f"Error during ingestion: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)

    print_session(session, show_rejections=not args.quiet)
    if args.print_metrics:
        print(generate_metrics().decode())
    if session.status is SessionStatus.FAILED:
        sys.exit(1)


def status_command(args):
    """
    Show the state and counts of a session.

    Args:
        args: Command-line arguments
    """
    settings = build_settings(args)
    try:
        with build_service(args, settings) as service:
            session = service.get_session_status(args.session_id)
    except ClmError as e:
        print(f"\nError: {e}")
        sys.exit(1)

    if args.json:
        print(session.model_dump_json(indent=2))
    else:
        print_session(session)


def route_command(args):
    """
    Route integration messages read from a JSON file (one message or a list).

    Args:
        args: Command-line arguments
    """
    data = read_json(args.input)
    messages = data if isinstance(data, list) else [data]
    settings = build_settings(args)

    failures = 0
    try:
        with build_service(args, settings) as service:
            for wire in messages:
                try:
                    outcome = service.submit_integration_message(wire)
                except (ClmError, ValueError) as e:
                    failures += 1
                    code = getattr(e, "code", type(e).__name__)
                    print(f"{'FAILED':<12} {code:<24} {e}")
                    continue
                print(
                    f"{outcome.status.value:<12} {outcome.event_type:<24} "
                    f"{outcome.handler or '-':<40} {outcome.detail or ''}"
                )
    except ClmError as e:
        logger.error(f"Error routing messages: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)

    print(f"\nRouted {len(messages) - failures}/{len(messages)} messages")
    if failures:
        sys.exit(1)


def cleanup_command(args):
    """
    Delete finished sessions and their staged records past the retention period.

    Args:
        args: Command-line arguments
    """
    settings = build_settings(args)
    try:
        with build_service(args, settings) as service:
            deleted = service.cleanup_sessions(args.retention_days)
    except (ClmError, ValueError) as e:
        logger.error(f"Error purging sessions: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)

    print(f"Purged {deleted} sessions")


def init_db_command(args):
    """
    Create the pipeline tables.

    Args:
        args: Command-line arguments
    """
    settings = build_settings(args)
    pool = DatabaseConnectionPool.from_settings(settings.database)
    try:
        pool.open()
        manager = SchemaManager(pool)
        manager.create_schema()
        if args.truncate:
            manager.truncate_all()
            logger.warning("All pipeline tables truncated")
        print(f"Schema ready on {settings.database.host}:{settings.database.port}/{settings.database.name}")
    except Exception as e:
        logger.error(f"Error creating schema: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)
    finally:
        pool.close()


def metrics_command(args):
    """
    Serve Prometheus metrics until interrupted.

    Args:
        args: Command-line arguments
    """
    start_metrics_server(args.port)
    logger.info(f"Serving metrics on port {args.port or os.getenv('METRICS_PORT', '8000')}")
    while True:
        time.sleep(1)


def add_database_arguments(parser: argparse.ArgumentParser) -> None:
    """Database options default to the DB_* environment variables, then to the settings file."""
    parser.add_argument("--config", default=None, help="Path to settings YAML file (default: $CLM_CONFIG)")
    parser.add_argument("--db-host", default=os.getenv("DB_HOST"), help="Database host")
    parser.add_argument("--db-port", type=int, default=os.getenv("DB_PORT"), help="Database port")
    parser.add_argument("--db-name", default=os.getenv("DB_NAME"), help="Database name")
    parser.add_argument("--db-user", default=os.getenv("DB_USER"), help="Database user")
    parser.add_argument("--db-password", default=os.getenv("DB_PASSWORD"), help="Database password")
    parser.add_argument(
        "--in-memory",
        action="store_true",
        help="Use an in-memory store instead of PostgreSQL (dry run)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clm-etl",
        description="CLM contract/customer ingestion and integration routing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Ingest contracts into PostgreSQL
  clm-etl ingest --source crm --entity contract --input data/contracts.json

  # Dry run against an in-memory store
  clm-etl ingest --source crm --entity contract --input data/contracts.json --in-memory

  # Route integration messages
  clm-etl route --input data/messages.json

  # Create tables
  clm-etl init-db --db-host localhost --db-name clm

  # Purge sessions finished more than 7 days ago
  clm-etl cleanup --retention-days 7
        """
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: $LOG_LEVEL or INFO)")
    parser.add_argument("--log-format", default=None, choices=["json", "text"], help="Log format")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    ingest_parser = subparsers.add_parser("ingest", help="Ingest a JSON batch of records")
    ingest_parser.add_argument("--source", required=True, help="Source system tag")
    ingest_parser.add_argument(
        "--entity",
        required=True,
        choices=["contract", "customer"],
        help="Entity kind of the records",
    )
    ingest_parser.add_argument("--input", required=True, help="Path to JSON file of records")
    ingest_parser.add_argument("--quiet", action="store_true", help="Do not list rejected records")
    ingest_parser.add_argument("--print-metrics", action="store_true", help="Print metrics after the run")
    add_database_arguments(ingest_parser)

    status_parser = subparsers.add_parser("status", help="Show a session")
    status_parser.add_argument("--session-id", required=True, help="Session id")
    status_parser.add_argument("--json", action="store_true", help="Print the session as JSON")
    add_database_arguments(status_parser)

    route_parser = subparsers.add_parser("route", help="Route integration messages from a JSON file")
    route_parser.add_argument("--input", required=True, help="Path to JSON message or list of messages")
    add_database_arguments(route_parser)

    init_parser = subparsers.add_parser("init-db", help="Create the pipeline tables")
    init_parser.add_argument("--truncate", action="store_true", help="Also remove all rows")
    add_database_arguments(init_parser)

    cleanup_parser = subparsers.add_parser("cleanup", help="Purge expired sessions and staged records")
    cleanup_parser.add_argument(
        "--retention-days",
        type=int,
        default=None,
        help="Days to keep finished sessions (default: etl.staging_retention_days)",
    )
    add_database_arguments(cleanup_parser)

    metrics_parser = subparsers.add_parser("metrics", help="Serve Prometheus metrics")
    metrics_parser.add_argument("--port", type=int, default=None, help="Port (default: $METRICS_PORT or 8000)")

    return parser


COMMANDS = {
    "ingest": ingest_command,
    "status": status_command,
    "route": route_command,
    "init-db": init_db_command,
    "cleanup": cleanup_command,
    "metrics": metrics_command,
}


def main(argv: list[str] | None = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logger(level=args.log_level, format_type=args.log_format)

    try:
        COMMANDS[args.command](args)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)


if __name__ == "__main__":
    main()
