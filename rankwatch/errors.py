"""
Error taxonomy for outbound scraping and run setup.

Per-item errors (:class:`NetworkError`, :class:`HttpStatusError`, plain
:class:`ScrapingError`) are caught by the batch orchestrator and turned
into outcomes.  :class:`ConfigurationError` always escapes to the caller.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import aiohttp

from .infra.http import HttpClient


class ScrapingError(Exception):
    """Base class for failures while fetching a single item."""

    def __init__(self, message: str, code: str = "UNKNOWN", retryable: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.retryable = retryable

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, retryable={self.retryable})"


class NetworkError(ScrapingError):
    """Connection reset, timeout or DNS failure."""

    def __init__(self, message: str, code: str = "NETWORK") -> None:
        super().__init__(message, code=code, retryable=True)


class HttpStatusError(ScrapingError):
    """Non-2xx response from the source."""

    def __init__(self, status: int, message: str = "", retry_after: Optional[float] = None) -> None:
        self.status = status
        self.retry_after = retry_after
        retryable = status == 429 or status >= 500
        super().__init__(message or f"HTTP {status}", code=f"HTTP_{status}", retryable=retryable)

    @property
    def is_gone(self) -> bool:
        """404 means the entity no longer exists upstream; that is a valid outcome."""
        return self.status == 404

    @property
    def needs_cooldown(self) -> bool:
        return self.retryable


class ConfigurationError(Exception):
    """Missing or invalid settings. Fatal for the whole invocation."""


def classify_error(exc: BaseException) -> ScrapingError:
    """Map any exception raised while fetching into the scraping taxonomy."""
    if isinstance(exc, ScrapingError):
        return exc

    if isinstance(exc, aiohttp.ClientResponseError):
        # str() of a ClientResponseError needs request_info, build the message ourselves
        retry_after = HttpClient.parse_retry_after(exc.headers.get("Retry-After")) if exc.headers else None
        return HttpStatusError(
            exc.status, f"HTTP {exc.status}: {exc.message}".rstrip(": "), retry_after=retry_after
        )

    if isinstance(exc, asyncio.TimeoutError):
        return NetworkError("Request timed out", code="ETIMEDOUT")

    if isinstance(exc, aiohttp.ClientConnectionError):
        return NetworkError(f"Network error: {exc}", code="ECONNRESET")

    if isinstance(exc, aiohttp.ClientError):
        return NetworkError(f"Client error: {exc}")

    return ScrapingError(str(exc) or type(exc).__name__)
