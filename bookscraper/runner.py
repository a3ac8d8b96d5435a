"""Run orchestration: one scheduler batch per configured store."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

from bookscraper.config import ConfigError, RunConfig
from bookscraper.fetcher import BooksFetcher
from bookscraper.models import Book
from bookscraper.parser import parser_for
from bookscraper.scheduler import BatchResult, Scheduler

__all__ = ["RunResult", "run", "CANDIDATE_MULTIPLIER"]

logger = logging.getLogger(__name__)

# discovery yields at most this many candidates per wanted book
CANDIDATE_MULTIPLIER = 4


@dataclass
class RunResult:
    """Merged outcome of every store batch in one run."""
    batches: list[BatchResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def books(self) -> list[Book]:
        return [book for batch in self.batches for book in batch.books]

    @property
    def succeeded(self) -> int:
        return sum(batch.succeeded for batch in self.batches)

    @property
    def failed(self) -> int:
        return sum(batch.failed for batch in self.batches)

    @property
    def skipped_no_isbn(self) -> int:
        return sum(batch.skipped_no_isbn for batch in self.batches)


def run(
    config: RunConfig,
    *,
    fetcher: Optional[BooksFetcher] = None,
    cancel_event: Optional[threading.Event] = None,
) -> RunResult:
    """Scrape every configured store and merge the results.

    The config and store table are checked before any request is made.
    A fetcher passed in is used as-is and left open; without an explicit
    *cancel_event* the run adopts the fetcher's own event, so a cancel
    also interrupts its retries and backoff waits.

    Raises:
        ConfigError: Invalid settings, a store without a parser, or an
            injected fetcher bound to a different cancel event.
    """
    config.validate()
    parsers = [parser_for(site, strict_isbn=config.strict_isbn) for site in config.sites]

    fetcher_cancel = getattr(fetcher, "cancel_event", None)
    if cancel_event is not None and fetcher_cancel is not None \
            and fetcher_cancel is not cancel_event:
        raise ConfigError("The fetcher and the run must share one cancel event")
    if cancel_event is not None:
        cancel = cancel_event
    elif fetcher_cancel is not None:
        cancel = fetcher_cancel
    else:
        cancel = threading.Event()

    owns_fetcher = fetcher is None
    if owns_fetcher:
        fetcher = BooksFetcher(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            timeout=config.timeout,
            delay_between_requests=config.delay_between_requests,
            # workers plus the dispatching thread reading listings
            pool_size=config.concurrent_tasks + 1,
            cancel_event=cancel,
        )

    result = RunResult()
    scheduler = Scheduler(
        fetcher,
        concurrent_tasks=config.concurrent_tasks,
        books_per_store=config.books_per_store,
        cancel_event=cancel,
    )
    limit = config.books_per_store * CANDIDATE_MULTIPLIER

    try:
        for parser in parsers:
            if cancel.is_set():
                logger.warning("Run cancelled before %s started", parser.site.value)
                result.cancelled = True
                break
            batch = scheduler.run(parser, parser.discover(fetcher, limit))
            result.batches.append(batch)
            if batch.cancelled:
                result.cancelled = True
                break
    finally:
        if owns_fetcher:
            fetcher.close()

    logger.info(
        "Run finished | stores=%d | succeeded=%d | failed=%d | "
        "skipped_no_isbn=%d | cancelled=%s",
        len(result.batches), result.succeeded, result.failed,
        result.skipped_no_isbn, result.cancelled,
    )
    return result
