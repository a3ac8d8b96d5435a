"""Bounded-concurrency fetch+parse pipeline for one store.

The dispatching thread pulls candidate URLs on demand and hands them to
a fixed pool of worker threads. Only the dispatching thread touches the
:class:`BatchResult`, so the counters need no lock::

    scheduler = Scheduler(fetcher, concurrent_tasks=3, books_per_store=100)
    result = scheduler.run(parser, parser.discover(fetcher, limit=10_000))
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from bookscraper.fetcher import BooksFetcher, FetchCancelledError, FetchError
from bookscraper.models import Book, Site
from bookscraper.parser import ExtractionError, NoIsbnError, SiteParser

__all__ = ["Scheduler", "BatchResult", "PageOutcome", "Outcome"]

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class PageOutcome:
    """What one fetch+extract pipeline produced for one URL."""
    url: str
    status: Outcome
    book: Optional[Book] = None
    error: Optional[Exception] = None


@dataclass
class BatchResult:
    """Counters and books collected for one store."""
    site: Site
    succeeded: int = 0
    failed: int = 0
    skipped_no_isbn: int = 0
    books: list[Book] = field(default_factory=list)
    exhausted: bool = False
    cancelled: bool = False

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed + self.skipped_no_isbn

    def record(self, outcome: PageOutcome) -> None:
        if outcome.status is Outcome.OK:
            self.succeeded += 1
            self.books.append(outcome.book)
        elif outcome.status is Outcome.SKIPPED:
            self.skipped_no_isbn += 1
        else:
            self.failed += 1


class Scheduler:
    """Runs up to ``concurrent_tasks`` pipelines at once until
    ``books_per_store`` books are collected or candidates run out."""

    def __init__(
        self,
        fetcher: BooksFetcher,
        concurrent_tasks: int = 3,
        books_per_store: int = 1500,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        if concurrent_tasks < 1:
            raise ValueError(f"concurrent_tasks must be >= 1, got {concurrent_tasks}")
        if books_per_store < 1:
            raise ValueError(f"books_per_store must be >= 1, got {books_per_store}")
        self._fetcher = fetcher
        self._concurrent_tasks = concurrent_tasks
        self._target = books_per_store
        self._cancel = cancel_event or threading.Event()

    def run(self, parser: SiteParser, candidates: Iterable[str]) -> BatchResult:
        """Process candidate URLs for one store and return the batch result.

        Never raises for per-page problems: fetch and extraction errors are
        counted. Cancellation stops dispatching, drains in-flight pipelines
        and returns the partial result with ``cancelled`` set.
        """
        site = parser.site
        result = BatchResult(site)
        urls = iter(candidates)
        pending: dict[Future, str] = {}
        stop_dispatch = False
        start = time.monotonic()

        logger.info(
            "Batch started | site=%s | concurrent_tasks=%d | target=%d",
            site.value, self._concurrent_tasks, self._target,
        )

        with ThreadPoolExecutor(
            max_workers=self._concurrent_tasks,
            thread_name_prefix=f"{site.value}-worker",
        ) as pool:
            while True:
                while not stop_dispatch:
                    if self._cancel.is_set():
                        result.cancelled = True
                        stop_dispatch = True
                        break
                    slots = min(self._concurrent_tasks, self._target - result.succeeded)
                    if len(pending) >= slots:
                        break
                    url = self._next_url(urls, result)
                    if url is None:
                        stop_dispatch = True
                        break
                    logger.debug("dispatch | site=%s | url=%s", site.value, url)
                    pending[pool.submit(self._process, parser, url)] = url

                if not pending:
                    break

                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    self._collect(result, pending.pop(future), future)

        if self._cancel.is_set():
            result.cancelled = True
        if result.exhausted and result.succeeded < self._target:
            logger.info(
                "Candidates exhausted for %s: %d/%d books collected",
                site.value, result.succeeded, self._target,
            )

        logger.info(
            "Batch finished | site=%s | succeeded=%d | failed=%d | "
            "skipped_no_isbn=%d | cancelled=%s | %.1fs",
            site.value, result.succeeded, result.failed,
            result.skipped_no_isbn, result.cancelled, time.monotonic() - start,
        )
        return result

    # -- Private -----------------------------------------------------------

    def _next_url(self, urls, result: BatchResult) -> Optional[str]:
        """Pull the next candidate; None when the source is done."""
        try:
            return next(urls)
        except StopIteration:
            result.exhausted = True
        except FetchCancelledError:
            result.cancelled = True
        except Exception:
            logger.exception("Candidate source failed for %s", result.site.value)
            result.exhausted = True
        return None

    def _process(self, parser: SiteParser, url: str) -> PageOutcome:
        """Worker pipeline: fetch -> extract -> classify."""
        try:
            html = self._fetcher.fetch(url)
        except FetchCancelledError:
            raise
        except FetchError as exc:
            return PageOutcome(url, Outcome.FAILED, error=exc)

        try:
            book = parser.extract(html, url)
        except NoIsbnError as exc:
            return PageOutcome(url, Outcome.SKIPPED, error=exc)
        except ExtractionError as exc:
            return PageOutcome(url, Outcome.FAILED, error=exc)
        return PageOutcome(url, Outcome.OK, book=book)

    def _collect(self, result: BatchResult, url: str, future: Future) -> None:
        try:
            outcome = future.result()
        except FetchCancelledError:
            result.cancelled = True
            logger.debug("cancelled | url=%s", url)
            return
        except Exception:
            logger.exception("pipeline crashed | url=%s", url)
            result.failed += 1
            return

        result.record(outcome)
        if outcome.status is Outcome.OK:
            logger.info(
                "book | site=%s | isbn=%s | url=%s",
                result.site.value, outcome.book.isbn, url,
            )
        elif outcome.status is Outcome.SKIPPED:
            logger.info("skip | reason=no_isbn | url=%s", url)
        else:
            logger.warning("failed | url=%s | error=%s", url, outcome.error)
