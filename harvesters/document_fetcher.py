#!/usr/bin/env python3
"""
Resilient document retrieval.

Network errors, timeouts and 5xx/429 responses are retried with a linearly
growing delay (base_delay * attempt); any other 4xx fails immediately.
"""

import logging
import time
from typing import Callable, Optional

import requests
from tenacity import RetryError, Retrying, retry_if_exception, stop_after_attempt, wait_incrementing

from core.errors import (
    ClientError,
    FetchError,
    FetchTimeoutError,
    NetworkError,
    RetriesExhaustedError,
    ServerError,
)

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.5',
}


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, FetchError) and exc.retryable


def classify_status(url: str, status_code: int, reason: str = "") -> Optional[FetchError]:
    """Map an HTTP status to the matching FetchError, None for success"""
    if status_code < 400:
        return None
    message = f"HTTP {status_code} {reason} from {url}".replace("  ", " ")
    if status_code >= 500 or status_code == 429:
        return ServerError(message, url=url, status_code=status_code)
    return ClientError(message, url=url, status_code=status_code)


class DocumentFetcher:
    """
    Fetch raw document bytes over HTTP with bounded retries.

    Args:
        timeout: Per-request timeout in seconds
        max_retries: Total number of attempts (at least 1)
        base_delay: Delay unit in seconds; attempt n is followed by base_delay * n
        user_agent: User-Agent header sent with every request
        session: Optional requests.Session to reuse
        sleep: Sleep function used between attempts
    """

    name = "DocumentFetcher"

    def __init__(self, timeout: float = 10.0, max_retries: int = 3, base_delay: float = 1.0,
                 user_agent: str = "Mozilla/5.0 (compatible; DataScraper/1.0)",
                 session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.session = session or requests.Session()
        self.session.headers.update({**DEFAULT_HEADERS, 'User-Agent': user_agent})
        self._sleep = sleep

    def stop(self) -> None:
        self.session.close()

    def _attempt(self, url: str) -> bytes:
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.Timeout as exc:
            raise FetchTimeoutError(f"Timeout fetching {url}: {exc}", url=url) from exc
        except requests.RequestException as exc:
            raise NetworkError(f"Request error for {url}: {exc}", url=url) from exc

        error = classify_status(url, response.status_code, response.reason or "")
        if error is not None:
            raise error
        return response.content

    def _before_sleep(self, retry_state) -> None:
        error = retry_state.outcome.exception()
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"Request failed (attempt {retry_state.attempt_number}/{self.max_retries}), "
            f"retrying in {delay:.1f}s: {error}"
        )

    def fetch(self, url: str) -> bytes:
        """Return the body of ``url``; raises FetchError subclasses on failure"""
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_incrementing(start=self.base_delay, increment=self.base_delay),
            retry=retry_if_exception(_is_retryable),
            before_sleep=self._before_sleep,
            sleep=self._sleep,
        )
        try:
            for attempt in retrying:
                with attempt:
                    logger.info(f"Fetching URL (attempt {attempt.retry_state.attempt_number}/{self.max_retries}): {url}")
                    content = self._attempt(url)
        except RetryError as exc:
            last_error = exc.last_attempt.exception()
            logger.error(f"Failed to fetch URL after {self.max_retries} attempts: {last_error}")
            raise RetriesExhaustedError(url, self.max_retries, last_error) from last_error
        except ClientError as exc:
            logger.error(f"Non-retriable error occurred: {exc}")
            raise

        logger.info(f"Successfully fetched {len(content)} bytes from {url}")
        return content


def fetch(url: str, timeout: float = 10.0, max_retries: int = 3, base_delay: float = 1.0) -> bytes:
    """One-shot convenience wrapper around DocumentFetcher"""
    fetcher = DocumentFetcher(timeout=timeout, max_retries=max_retries, base_delay=base_delay)
    try:
        return fetcher.fetch(url)
    finally:
        fetcher.stop()
