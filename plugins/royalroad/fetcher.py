"""
Royal Road fetcher – rate-aware page client.

Before every request the fetcher sleeps ``min(request_delay, remaining
budget)`` and skips the sleep entirely once the budget is spent.  Any
failure is re-raised as a typed :mod:`rankwatch.errors` exception.
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from rankwatch.budget import ProcessingBudget, Sleep, timeout_aware_delay
from rankwatch.errors import classify_error
from rankwatch.infra.http import HttpClient
from rankwatch.models import FictionRecord, RisingStarEntry, utcnow
from rankwatch.settings import ScrapingSettings

from .parser import extract, parse_rising_stars


logger = logging.getLogger(__name__)

MAIN_GENRE = "main"


class RoyalRoadFetcher:
    """Fetches fiction pages and Rising Stars lists one request at a time."""

    name = "RoyalRoadFetcher"

    def __init__(
        self,
        settings: Optional[ScrapingSettings] = None,
        *,
        http: Optional[HttpClient] = None,
        budget: Optional[ProcessingBudget] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.settings = settings or ScrapingSettings()
        self.http = http or HttpClient(
            base_url=self.settings.base_url,
            timeout=self.settings.request_timeout_ms / 1000,
            user_agent=self.settings.user_agent,
        )
        self.budget = budget
        self._sleep = sleep
        self.request_count = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, *_):
        await self.close()

    async def close(self) -> None:
        if hasattr(self.http, "close"):
            await self.http.close()

    @property
    def request_delay(self) -> float:
        return self.settings.request_delay_ms / 1000

    async def fetch(self, path: str) -> str:
        """GET ``path`` after the inter-request delay; raises typed errors."""
        await timeout_aware_delay(self.request_delay, self.budget, self._sleep)
        self.request_count += 1
        logger.debug(f"GET {path}")
        try:
            return await self.http.get_text(path)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise classify_error(e) from e

    # ------------------------------------------------------------------- #
    def fiction_path(self, royalroad_id: str) -> str:
        return self.settings.fiction_path.format(id=royalroad_id)

    def rising_stars_path(self, genre: str = MAIN_GENRE) -> str:
        if genre == MAIN_GENRE:
            return self.settings.rising_stars_path
        return self.settings.genre_path.format(genre=genre)

    async def fetch_fiction(self, royalroad_id: str) -> FictionRecord:
        html = await self.fetch(self.fiction_path(royalroad_id))
        record = extract(html, royalroad_id)
        logger.info(f"Fetched fiction {royalroad_id}: {record.title or '(untitled)'}")
        return record

    async def fetch_rising_stars(
        self, genre: str = MAIN_GENRE, captured_at: Optional[datetime] = None
    ) -> List[RisingStarEntry]:
        html = await self.fetch(self.rising_stars_path(genre))
        entries = parse_rising_stars(html, genre, captured_at or utcnow())
        logger.info(f"Fetched {len(entries)} Rising Stars entries for {genre}")
        return entries
