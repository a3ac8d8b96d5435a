"""CLI entry point for the bookstore scraper.

Usage::

    python -m bookscraper.main
    python -m bookscraper.main --stores labirint --books-per-store 100
    python -m bookscraper.main --concurrent-tasks 5 --format json --log-dir logs
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
import time
from dataclasses import replace
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

from bookscraper.config import ConfigError, RunConfig, parse_sites
from bookscraper.exporter import ExportError, export_csv, export_json
from bookscraper.models import Site
from bookscraper.runner import RunResult, run

__all__ = ["build_parser", "print_summary", "setup_logging", "main"]

logger = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130


def setup_logging(level: int = logging.INFO, log_dir: Optional[str] = None) -> None:
    """Configure root logger with console output and an optional daily log file."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    handlers[0].setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))

    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            Path(log_dir) / "parser.log", when="midnight", encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"
        ))
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)


def _log_level(name: Optional[str]) -> int:
    name = (name or os.environ.get("LOG_LEVEL") or "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="python -m bookscraper.main",
        description="Scrape ISBN, title and authors from online bookstores",
    )

    parser.add_argument(
        "--stores", nargs="+", metavar="STORE",
        help="Stores to scrape (default: all). "
             f"Known: {', '.join(site.value for site in Site)}",
    )
    parser.add_argument(
        "--concurrent-tasks", type=int, metavar="N",
        help="Pages fetched in parallel per store (default: 3)",
    )
    parser.add_argument(
        "--books-per-store", type=int, metavar="N",
        help="Books to collect per store (default: 1500)",
    )
    parser.add_argument(
        "--max-attempts", type=int, metavar="N",
        help="HTTP attempts per page (default: 3)",
    )
    parser.add_argument(
        "--strict-isbn", action="store_true", default=None,
        help="Also verify ISBN check digits",
    )
    parser.add_argument(
        "--format", choices=["csv", "json"], default="csv",
        help="Output format (default: csv)",
    )
    parser.add_argument(
        "--output-dir", type=str, default="output",
        help="Output directory (default: output)",
    )
    parser.add_argument(
        "--log-level", type=str, default=None,
        help="Logging level (default: $LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--log-dir", type=str, default=None,
        help="Also write a daily rotated log file to this directory",
    )

    return parser


def build_config(args: argparse.Namespace) -> RunConfig:
    """Environment settings overridden by explicit CLI flags.

    Raises:
        ConfigError: On any invalid value.
    """
    config = RunConfig.from_env()
    overrides = {}
    if args.stores:
        overrides["sites"] = tuple(parse_sites(args.stores))
    if args.concurrent_tasks is not None:
        overrides["concurrent_tasks"] = args.concurrent_tasks
    if args.books_per_store is not None:
        overrides["books_per_store"] = args.books_per_store
    if args.max_attempts is not None:
        overrides["max_attempts"] = args.max_attempts
    if args.strict_isbn:
        overrides["strict_isbn"] = True
    return replace(config, **overrides).validate()


def print_summary(result: RunResult) -> None:
    """Print per-store and total counters to stdout."""
    print("\nSummary:")
    for batch in result.batches:
        note = ""
        if batch.cancelled:
            note = " (cancelled)"
        elif batch.exhausted:
            note = " (candidates exhausted)"
        print(
            f"  {batch.site.value}: {batch.succeeded} books, "
            f"{batch.failed} failed, {batch.skipped_no_isbn} without ISBN{note}"
        )
    print(
        f"  Total: {result.succeeded} books, {result.failed} failed, "
        f"{result.skipped_no_isbn} without ISBN"
    )
    if result.cancelled:
        print("  Run was interrupted; partial results exported.")


def _install_signal_handlers(cancel_event: threading.Event) -> None:
    def _handle(signum, frame) -> None:
        logger.warning(
            "Received %s, finishing in-flight pages...", signal.Signals(signum).name,
        )
        cancel_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def main(argv: list[str] | None = None) -> None:
    """Run the scraper CLI."""
    args = build_parser().parse_args(argv)

    setup_logging(_log_level(args.log_level), args.log_dir)

    try:
        config = build_config(args)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(1)

    export_fn = export_csv if args.format == "csv" else export_json
    cancel_event = threading.Event()
    _install_signal_handlers(cancel_event)

    logger.info(
        "Starting scraper for %s...",
        ", ".join(site.value for site in config.sites),
    )
    start_time = time.monotonic()

    try:
        result = run(config, cancel_event=cancel_event)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(1)

    elapsed = time.monotonic() - start_time
    logger.info("Done! %d books scraped in %.1fs", result.succeeded, elapsed)

    if not result.books:
        logger.warning("No books found. Exporting an empty file.")

    try:
        output_path = export_fn(result.books, args.output_dir)
    except ExportError as exc:
        logger.error("Export failed: %s", exc)
        sys.exit(1)

    logger.info("Saved to %s", output_path)
    print_summary(result)

    if result.cancelled:
        sys.exit(EXIT_INTERRUPTED)


if __name__ == "__main__":
    main()
