"""
CLI entry point for grants-ingest.

Usage:
    python -m grants_ingest ingest --all
    python -m grants_ingest ingest --source grants_gov --source sbir_gov
    python -m grants_ingest expire
    python -m grants_ingest verify-links --limit 50
    python -m grants_ingest health
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

import structlog

# Log level mapping
LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

EXIT_FATAL = 2
EXIT_INTERRUPTED = 130


def setup_logging(level: str = "INFO", json_output: bool = False):
    """Configure structured logging (to stderr; stdout carries results)."""
    log_level = LOG_LEVELS.get(level.upper(), logging.INFO)

    if json_output:
        processors = [
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        prog="grants-ingest",
        description="Grant ingestion pipeline: fetch, extract, validate, deduplicate, persist",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Ingest every enabled source
  python -m grants_ingest ingest --all

  # Ingest specific sources with fuzzy deduplication
  python -m grants_ingest ingest --source grants_gov --source sbir_gov --fuzzy

  # Close grants whose fixed deadline has passed
  python -m grants_ingest expire

  # Re-check up to 50 stale apply links
  python -m grants_ingest verify-links --limit 50

Exit codes:
  0  success
  1  completed with recoverable errors (health: unhealthy)
  2  fatal (no source completed, store unavailable, bad configuration)
        """,
    )

    parser.add_argument("--config", type=str, help="Path to sources.yml")
    parser.add_argument("--settings", type=str, help="Path to settings.yml")
    parser.add_argument("--db", type=str, help="SQLite database path (overrides settings)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON (for production)",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show version and exit",
    )

    commands = parser.add_subparsers(dest="command", metavar="command")

    ingest = commands.add_parser("ingest", help="Run the ingestion pipeline")
    target = ingest.add_mutually_exclusive_group(required=True)
    target.add_argument(
        "--source",
        action="append",
        metavar="ID",
        help="Source id to ingest (repeatable)",
    )
    target.add_argument("--all", action="store_true", help="Ingest every enabled source")
    ingest.add_argument("--fuzzy", action="store_true", help="Enable fuzzy cross-source deduplication")
    ingest.add_argument(
        "--extraction",
        choices=["selector", "llm"],
        help="Extraction strategy for scraped pages (overrides settings)",
    )

    commands.add_parser("expire", help="Close grants whose fixed deadline has passed")

    verify = commands.add_parser("verify-links", help="Re-verify stale apply URLs")
    verify.add_argument("--limit", type=int, help="Maximum grants to check")

    commands.add_parser("health", help="Print the ingestion health report")
    commands.add_parser("sources", help="List the source catalog")

    return parser


def print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def describe_sources(registry) -> list[dict]:
    return [
        {
            "source_id": source.source_id,
            "name": source.name,
            "type": source.type.value,
            "adapter": source.adapter or "configured",
            "enabled": source.enabled,
            "priority": source.priority,
            "schedule_interval_hours": source.schedule_interval_hours,
        }
        for source in sorted(registry, key=lambda s: (-s.priority, s.source_id))
    ]


async def main_async(args) -> int:
    """Async main function; returns the process exit code."""
    from .config.loader import load_settings, load_sources
    from .core.errors import ConfigError, StoreUnavailableError
    from .orchestrator import IngestionOrchestrator
    from .sources.registry import SourceRegistry
    from .store.sqlite import SQLiteGrantStore

    logger = structlog.get_logger(__name__)

    try:
        settings = load_settings(args.settings)
        registry = SourceRegistry(load_sources(args.config))
    except (ConfigError, FileNotFoundError) as e:
        logger.error("config_invalid", error=str(e))
        return EXIT_FATAL

    if args.command == "sources":
        print_json(describe_sources(registry))
        return 0

    if args.db:
        settings.database_path = args.db
    if getattr(args, "fuzzy", False):
        settings.dedup.fuzzy_enabled = True
    if getattr(args, "extraction", None):
        settings.extraction.strategy = args.extraction

    try:
        store = SQLiteGrantStore(settings.database_path)
    except StoreUnavailableError as e:
        logger.error("store_unavailable", error=str(e))
        return EXIT_FATAL

    try:
        orchestrator = IngestionOrchestrator(registry, store, settings)

        if args.command == "ingest":
            logger.info("starting_ingest", sources=args.source or "all enabled")
            result = await orchestrator.run_all(None if args.all else args.source)
            print_json(result.to_dict())
            return result.exit_code

        if args.command == "expire":
            result = orchestrator.expire_grants()
            print_json(result.to_dict())
            return result.exit_code

        if args.command == "verify-links":
            result = await orchestrator.verify_links(limit=args.limit)
            print_json(result.to_dict())
            return result.exit_code

        if args.command == "health":
            report = orchestrator.health_report()
            print_json(report.to_dict())
            return 0 if report.healthy else 1

        raise ConfigError(f"Unknown command: {args.command}")
    except ConfigError as e:
        logger.error("config_invalid", error=str(e))
        return EXIT_FATAL
    except StoreUnavailableError as e:
        logger.error("store_unavailable", error=str(e))
        return EXIT_FATAL
    finally:
        store.close()


def main(argv: Optional[list[str]] = None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Version check
    if args.version:
        from . import __version__
        print(f"grants-ingest {__version__}")
        sys.exit(0)

    if not args.command:
        parser.print_help(sys.stderr)
        sys.exit(EXIT_FATAL)

    # Setup logging
    setup_logging(args.log_level, args.json_logs)

    # Run async main
    try:
        sys.exit(asyncio.run(main_async(args)))
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        logger = structlog.get_logger(__name__)
        logger.exception("fatal_error", error=str(e))
        sys.exit(EXIT_FATAL)


if __name__ == "__main__":
    main()
