"""
http.py – Async HTTP client built on *aiohttp* with a fixed header set,
          optional base URL and Retry-After parsing for 429 / 5xx.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, Mapping, Optional

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_HEADERS: Dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}


class HttpClient:
    """
    Thin wrapper over *aiohttp.ClientSession* adding:

    * base URL joining and one place for the User-Agent / Accept headers
    * one attempt per request; 429 / 5xx surface as
      *aiohttp.ClientResponseError* carrying the response headers, and the
      batch layer owns cooldowns (see :meth:`parse_retry_after`)
    * async context-manager support
    """

    def __init__(
        self,
        *,
        base_url: str = "",
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        user_agent: Optional[str] = None,
        default_headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._external_session = session
        self._timeout = timeout
        self._own_session: Optional[aiohttp.ClientSession] = None
        self._default_headers: Dict[str, str] = {**DEFAULT_HEADERS, **dict(default_headers or {})}
        if user_agent:
            self._default_headers["User-Agent"] = user_agent

    # ---------------------------------------------- #
    # Async context-manager
    async def __aenter__(self) -> "HttpClient":  # noqa: D401
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        await self.close()

    # ---------------------------------------------- #
    # Session management
    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._external_session:
            return self._external_session
        if self._own_session is None or self._own_session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._own_session = aiohttp.ClientSession(timeout=timeout)
        return self._own_session

    async def close(self) -> None:
        if self._own_session and not self._own_session.closed:
            await self._own_session.close()
            self._own_session = None

    # ---------------------------------------------- #
    # Helpers
    @staticmethod
    def parse_retry_after(header_val: Optional[str]) -> Optional[float]:
        """Return seconds given a Retry-After header value (delta-seconds or HTTP-date)."""
        if not header_val:
            return None
        header_val = header_val.strip()
        if header_val.isdigit():
            return float(header_val)
        try:
            retry_at = parsedate_to_datetime(header_val)
        except (TypeError, ValueError):
            return None
        if retry_at.tzinfo is None:
            retry_at = retry_at.replace(tzinfo=timezone.utc)
        return max(0.0, (retry_at - datetime.now(tz=timezone.utc)).total_seconds())

    def build_url(self, path_or_url: str) -> str:
        if path_or_url.startswith(("http://", "https://")) or not self._base_url:
            return path_or_url
        return f"{self._base_url}/{path_or_url.lstrip('/')}"

    @property
    def default_headers(self) -> Dict[str, str]:
        return dict(self._default_headers)

    async def _request(self, method: str, url: str, **kwargs) -> aiohttp.ClientResponse:
        """Perform one request; returns *aiohttp.ClientResponse* for 2xx/3xx.

        Any *aiohttp* error propagates unchanged; callers classify it.
        """
        session = await self._ensure_session()
        headers = {**self._default_headers, **dict(kwargs.pop("headers", None) or {})}

        resp = await session.request(method, url, headers=headers, **kwargs)
        if resp.status >= 400:
            resp.release()
            logger.debug("HTTP %s %s -> %d", method, url, resp.status)
            raise aiohttp.ClientResponseError(
                resp.request_info,
                resp.history,
                status=resp.status,
                message=f"status {resp.status}",
                headers=resp.headers,
            )
        return resp

    async def get_text(self, path_or_url: str, **kwargs) -> str:
        async with await self._request("GET", self.build_url(path_or_url), **kwargs) as resp:
            return await resp.text()
