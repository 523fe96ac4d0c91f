"""
Royal Road batch jobs.

* :class:`FictionHistoryJob` refreshes the stats of every fiction that is
  due, one history row per fiction.
* :class:`RisingStarsJob` captures the Rising Stars list of every due
  genre, creating minimal fiction records for unknown entries.
* :func:`scrape_single_fiction` adds one fiction on demand.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from rankwatch.budget import ProcessingBudget, Sleep
from rankwatch.errors import ScrapingError
from rankwatch.interfaces import FictionStore
from rankwatch.models import (
    FictionHistoryEntry,
    RisingStarEntry,
    RunSummary,
    SnapshotEntry,
    WorkItem,
    utcnow,
)
from rankwatch.orchestrator import BatchOrchestrator
from rankwatch.settings import Settings

from .fetcher import RoyalRoadFetcher
from .sinks import fiction_to_row


logger = logging.getLogger(__name__)

UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_AUTHOR = "Unknown Author"


class _Job:
    name = "job"

    def __init__(
        self,
        store: FictionStore,
        fetcher: RoyalRoadFetcher,
        budget: ProcessingBudget,
        settings: Settings,
        sleep: Sleep = asyncio.sleep,
    ):
        self.store = store
        self.fetcher = fetcher
        self.budget = budget
        self.settings = settings
        self._sleep = sleep

    def _orchestrator(self, slice_size: int, **kwargs) -> BatchOrchestrator:
        scraping = self.settings.scraping
        return BatchOrchestrator(
            self.budget,
            slice_size=slice_size,
            cooldown=scraping.cooldown_ms / 1000,
            slice_pause=scraping.slice_pause_ms / 1000,
            sleep=self._sleep,
            name=self.name,
            **kwargs,
        )


class FictionHistoryJob(_Job):
    name = "fiction-history"

    async def run(self, limit: Optional[int] = None) -> RunSummary:
        limit = limit or self.settings.limits.fictions_per_run
        items = await self.store.get_entities_due_for_update(limit)
        logger.info(f"[{self.name}] {len(items)} fictions due for update")

        orchestrator = self._orchestrator(
            self.settings.batches.fiction_history,
            item_key=lambda item: item.royalroad_id,
            on_failure=self._record_failure,
            on_gone=self._record_gone,
        )
        return await orchestrator.run(items, self._process, self.store.append_history_entries)

    async def _process(self, item: WorkItem) -> List[FictionHistoryEntry]:
        record = await self.fetcher.fetch_fiction(item.royalroad_id)
        return [FictionHistoryEntry.from_record(item.fiction_id, record, captured_at=utcnow())]

    async def _record_failure(self, item: WorkItem, error: ScrapingError) -> None:
        await self.store.record_failed_attempt(item.fiction_id, error.code)

    async def _record_gone(self, item: WorkItem) -> None:
        await self.store.mark_gone(item.fiction_id)


class RisingStarsJob(_Job):
    """Captures ranked lists; the work items are genre slugs.

    Every row written by one run shares the run's ``captured_at`` so the
    genres of a run form one consistent snapshot.
    """

    name = "rising-stars"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._fiction_ids: Dict[str, int] = {}
        self.created_count = 0

    async def run(
        self,
        genres: Optional[Sequence[str]] = None,
        *,
        only_due: bool = True,
        captured_at: Optional[datetime] = None,
    ) -> RunSummary:
        genres = list(genres if genres is not None else self.settings.genres)
        if only_due:
            genres = await self.store.get_genres_due_for_update(genres)
        logger.info(f"[{self.name}] {len(genres)} genres to capture")

        captured_at = captured_at or utcnow()

        async def process(genre: str) -> List[SnapshotEntry]:
            entries = await self.fetcher.fetch_rising_stars(genre, captured_at)
            return [await self._to_snapshot(entry) for entry in entries]

        orchestrator = self._orchestrator(self.settings.batches.rising_stars)
        return await orchestrator.run(genres, process, self.store.append_snapshot_entries)

    async def _to_snapshot(self, entry: RisingStarEntry) -> SnapshotEntry:
        fiction_id = await self._resolve_fiction(entry)
        return SnapshotEntry(
            entity_id=fiction_id,
            genre=entry.genre,
            position=entry.position,
            captured_at=entry.captured_at,
        )

    async def _resolve_fiction(self, entry: RisingStarEntry) -> int:
        cached = self._fiction_ids.get(entry.royalroad_id)
        if cached is not None:
            return cached

        existing = await self.store.get_fiction_by_key(entry.royalroad_id)
        if existing:
            fiction_id = existing["id"]
        else:
            fiction_id = await self.store.create_fiction(
                {
                    "royalroad_id": entry.royalroad_id,
                    "title": entry.title or UNKNOWN_TITLE,
                    "author_name": entry.author_name or UNKNOWN_AUTHOR,
                    "image_url": entry.image_url,
                }
            )
            self.created_count += 1
            logger.info(f"[{self.name}] New fiction {entry.royalroad_id} ({entry.title}) -> {fiction_id}")

        self._fiction_ids[entry.royalroad_id] = fiction_id
        return fiction_id


async def scrape_single_fiction(
    store: FictionStore,
    fetcher: RoyalRoadFetcher,
    royalroad_id: str,
) -> Tuple[bool, Dict[str, Any]]:
    """Return ``(created, fiction)`` for one fiction, scraping it if unknown.

    Upstream errors propagate as typed :mod:`rankwatch.errors` exceptions.
    """
    existing = await store.get_fiction_by_key(royalroad_id)
    if existing:
        logger.info(f"Fiction {royalroad_id} already exists as {existing['id']}")
        return False, existing

    record = await fetcher.fetch_fiction(royalroad_id)
    row = fiction_to_row(record)
    row["royalroad_id"] = royalroad_id
    row["title"] = record.title or UNKNOWN_TITLE
    row["author_name"] = record.author.name or UNKNOWN_AUTHOR
    fiction_id = await store.create_fiction(row)
    await store.append_history_entries([FictionHistoryEntry.from_record(fiction_id, record)])

    return True, {
        "fictionId": fiction_id,
        "royalroadId": royalroad_id,
        "title": row["title"],
        "author": {
            "name": row["author_name"],
            "id": record.author.id,
            "avatar": record.author.avatar,
        },
    }
