"""HTTP fetcher with retry logic, cancellation, and logging.

Usage::

    with BooksFetcher(max_attempts=3) as fetcher:
        html = fetcher.fetch("https://www.labirint.ru/books/801841/")

One fetcher (and its connection pool) is shared by every worker thread.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Optional

import requests
from requests.adapters import HTTPAdapter

__all__ = [
    "BooksFetcher", "FetchAttempt", "backoff_delay",
    "FetchError", "TerminalFetchError", "RetriesExhaustedError",
    "FetchCancelledError",
]

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
MAX_REDIRECTS = 5


class FetchError(Exception):
    """Raised when a page cannot be fetched."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to fetch {url}: {reason}")


class TerminalFetchError(FetchError):
    """Non-retryable response (e.g. 404) or malformed URL."""

    def __init__(self, url: str, status: Optional[int], reason: str = "") -> None:
        self.status = status
        super().__init__(url, reason or f"HTTP {status} (non-retryable)")


class RetriesExhaustedError(FetchError):
    """Every attempt ended in a retryable failure."""

    def __init__(
        self,
        url: str,
        last_status: Optional[int],
        attempts: list[FetchAttempt],
    ) -> None:
        self.last_status = last_status
        self.attempts = attempts
        last = attempts[-1].outcome if attempts else "no attempts"
        super().__init__(
            url, f"All {len(attempts)} attempts failed. Last error: {last}",
        )


class FetchCancelledError(FetchError):
    """The run was cancelled while this fetch was pending."""

    def __init__(self, url: str) -> None:
        super().__init__(url, "cancelled")


@dataclass(frozen=True)
class FetchAttempt:
    """One HTTP attempt, kept only to drive and report retries."""
    url: str
    attempt: int
    outcome: str
    status: Optional[int] = None
    delay: float = 0.0


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retrying after 0-indexed *attempt*.

    Equals ``min(base_delay * 2**attempt, max_delay)``; attempt numbers
    large enough to overflow a float clamp to *max_delay*.
    """
    try:
        delay = math.ldexp(base_delay, max(0, attempt))
    except OverflowError:
        return max_delay
    return min(delay, max_delay)


def _retry_after(response: requests.Response) -> Optional[float]:
    value = response.headers.get("Retry-After", "")
    if value.strip().isdigit():
        return float(value.strip())
    return None


class BooksFetcher:
    """HTTP client with retry (exponential backoff), optional politeness
    delay, cancellation, and per-request logging."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        timeout: float = 15.0,
        delay_between_requests: float = 0.0,
        pool_size: int = 10,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self._max_attempts = max(1, max_attempts)
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._timeout = timeout
        self._delay = delay_between_requests
        self._cancel = cancel_event or threading.Event()
        self._request_count = 0
        self._last_request_time: Optional[float] = None
        self._lock = threading.Lock()

        self._session = requests.Session()
        self._session.headers.update({"User-Agent": DEFAULT_USER_AGENT})
        self._session.max_redirects = MAX_REDIRECTS
        adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)

        logger.info(
            "Fetcher initialized (max_attempts=%d, base_delay=%.2fs, "
            "max_delay=%.1fs, timeout=%.1fs, pool=%d)",
            self._max_attempts, base_delay, max_delay, timeout, pool_size,
        )

    # -- Context Manager ---------------------------------------------------

    def __enter__(self) -> "BooksFetcher":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # -- Public API --------------------------------------------------------

    @property
    def request_count(self) -> int:
        """Total number of HTTP requests made (including retries)."""
        return self._request_count

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel

    def fetch(self, url: str) -> str:
        """Fetch a page and return its body as a string.

        Retries 429/5xx responses, connection errors and timeouts with
        exponential backoff. Cancellation is checked before every attempt
        and interrupts backoff waits.

        Raises:
            TerminalFetchError: Non-retryable status or malformed URL.
            RetriesExhaustedError: All attempts failed with retryable errors.
            FetchCancelledError: The cancel event was set.
        """
        attempts: list[FetchAttempt] = []
        last_status: Optional[int] = None

        for attempt in range(self._max_attempts):
            if self._cancel.is_set():
                raise FetchCancelledError(url)
            self._wait_for_rate_limit(url)

            retry_after: Optional[float] = None
            try:
                with self._lock:
                    self._request_count += 1
                start = time.monotonic()
                response = self._session.get(url, timeout=self._timeout)
                elapsed = time.monotonic() - start
            except (requests.exceptions.InvalidURL,
                    requests.exceptions.MissingSchema,
                    requests.exceptions.InvalidSchema) as e:
                raise TerminalFetchError(url, None, f"malformed URL: {e}") from e
            except requests.TooManyRedirects as e:
                raise TerminalFetchError(url, None, f"too many redirects: {e}") from e
            except requests.RequestException as e:
                # connection reset, timeouts, broken chunked bodies
                outcome = f"{type(e).__name__}: {e}"
            else:
                status = response.status_code
                if 200 <= status < 300:
                    logger.info("OK %s (%.2fs)", url, elapsed)
                    return response.text
                if status not in RETRYABLE_STATUS_CODES:
                    logger.warning("HTTP %d for %s - not retrying", status, url)
                    raise TerminalFetchError(url, status)
                last_status = status
                retry_after = _retry_after(response)
                outcome = f"HTTP {status}"

            is_last = attempt + 1 >= self._max_attempts
            delay = 0.0
            if not is_last:
                delay = backoff_delay(attempt, self._base_delay, self._max_delay)
                if retry_after is not None:
                    delay = min(retry_after, self._max_delay)

            record = FetchAttempt(url, attempt + 1, outcome, last_status, delay)
            attempts.append(record)
            logger.warning(
                "fetch failed | url=%s | attempt=%d/%d | outcome=%s | %s",
                url, record.attempt, self._max_attempts, outcome,
                "giving up" if is_last else f"retry in {delay:.2f}s",
            )

            if not is_last and self._cancel.wait(delay):
                raise FetchCancelledError(url)

        raise RetriesExhaustedError(url, last_status, attempts)

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self._session.close()
        logger.info(
            "Fetcher closed. Total requests made: %d",
            self._request_count,
        )

    # -- Private -----------------------------------------------------------

    def _wait_for_rate_limit(self, url: str) -> None:
        """Space request starts at least ``delay_between_requests`` apart."""
        if self._delay <= 0:
            return

        with self._lock:
            now = time.monotonic()
            start_at = now
            if self._last_request_time is not None:
                start_at = max(now, self._last_request_time + self._delay)
            self._last_request_time = start_at
        remaining = start_at - now

        if remaining > 0:
            logger.debug(
                "Rate limit: sleeping %.2fs before %s", remaining, url,
            )
            if self._cancel.wait(remaining):
                raise FetchCancelledError(url)
