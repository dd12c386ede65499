# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Retry policies applied by the transports to provider responses.

The transports consult a policy after every non-2xx response and every
network failure. Polling code never retries on its own; whether a request
is repeated is decided here, beneath the poller.

Two policies are provided:

* :class:`RetryPolicy` - bounded retries with backoff for transient
  statuses (408, 429, 5xx) and network errors, honoring ``Retry-After``;
* :class:`NoRetryOn429Policy` - zero retries, and HTTP 429 raises
  :class:`~mail_lro.errors.ThrottledError` immediately so the rate boundary
  can be observed instead of masked.

Example:
    Probing with retries disabled::

        transport = EmailTransport(config.provider, retry_policy=NoRetryOn429Policy())
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
import aiohttp

from .errors import ThrottledError
from .logger import get_logger

logger = get_logger("retry")

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAYS: tuple[float, ...] = (0.8, 1.6, 3.2)
MAX_RETRY_AFTER = 60.0
HTTP_TOO_MANY_REQUESTS = 429
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

# Network failures worth repeating; anything else propagates at once.
TEMPORARY_EXCEPTIONS: tuple[type[BaseException], ...] = (
    TimeoutError,
    asyncio.TimeoutError,
    ConnectionError,
    httpx.TimeoutException,
    httpx.NetworkError,
    aiohttp.ClientConnectionError,
)


def header_value(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup on a plain mapping."""
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def parse_retry_after(value: str | None) -> float | None:
    """Parse a ``Retry-After`` value given in seconds or as an HTTP date."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class RetryPolicy:
    """Bounded retry with backoff for transient provider failures.

    Attributes:
        max_retries: Retries allowed after the first attempt.
        delays: Delay in seconds per retry; the last entry repeats.
        retry_on: HTTP status codes considered transient.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        delays: tuple[float, ...] = DEFAULT_RETRY_DELAYS,
        retry_on: frozenset[int] = RETRYABLE_STATUS_CODES,
    ):
        self.max_retries = max_retries
        self.delays = delays
        self.retry_on = retry_on

    def should_retry(
        self,
        attempt: int,
        status_code: int,
        headers: Mapping[str, str],
        payload: Any = None,
    ) -> bool:
        """Decide whether a non-2xx response is repeated.

        Args:
            attempt: Zero-based index of the attempt that produced the response.
            status_code: HTTP status of the response.
            headers: Response headers.
            payload: Decoded response body, if any.
        """
        if attempt >= self.max_retries:
            return False
        return status_code in self.retry_on

    def should_retry_exception(self, attempt: int, exc: BaseException) -> bool:
        """Decide whether a network failure is repeated."""
        if attempt >= self.max_retries:
            return False
        return isinstance(exc, TEMPORARY_EXCEPTIONS)

    def calculate_delay(self, attempt: int, headers: Mapping[str, str] | None = None) -> float:
        """Return the delay before retry number ``attempt`` (zero-based).

        A ``Retry-After`` header wins over the configured delays, capped at
        :data:`MAX_RETRY_AFTER`.
        """
        if headers:
            retry_after = parse_retry_after(header_value(headers, "Retry-After"))
            if retry_after is not None:
                return min(retry_after, MAX_RETRY_AFTER)
        if not self.delays:
            return 0.0
        return self.delays[min(attempt, len(self.delays) - 1)]


class NoRetryOn429Policy(RetryPolicy):
    """Fail-fast policy used to observe the provider's rate ceiling.

    Performs no retries at all. HTTP 429 raises
    :class:`~mail_lro.errors.ThrottledError` carrying the status code and all
    response headers; other failures propagate normally.
    """

    def __init__(self) -> None:
        super().__init__(max_retries=0, delays=())

    def should_retry(
        self,
        attempt: int,
        status_code: int,
        headers: Mapping[str, str],
        payload: Any = None,
    ) -> bool:
        if status_code == HTTP_TOO_MANY_REQUESTS:
            logger.warning(
                "429 Too Many Requests received; headers: %s",
                ", ".join(f"{name}: {value}" for name, value in headers.items()),
            )
            raise ThrottledError.from_payload(status_code, headers, payload, reason="Too Many Requests")
        return False

    def should_retry_exception(self, attempt: int, exc: BaseException) -> bool:
        return False


__all__ = [
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_RETRY_DELAYS",
    "HTTP_TOO_MANY_REQUESTS",
    "NoRetryOn429Policy",
    "RETRYABLE_STATUS_CODES",
    "RetryPolicy",
    "header_value",
    "parse_retry_after",
]
