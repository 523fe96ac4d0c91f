"""
Core interfaces for rankwatch.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

from .models import FictionHistoryEntry, SnapshotEntry, WorkItem


class FictionStore(ABC):
    """Persistence collaborator used by the batch jobs.

    Every write is keyed by natural identity (royalroad id for fictions,
    ``(fiction_id, genre, captured_at)`` for rank rows) and must be safe to
    repeat.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this store."""
        pass

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    async def get_fiction_by_key(self, royalroad_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored fiction row for ``royalroad_id``, or None."""
        pass

    @abstractmethod
    async def create_fiction(self, fiction: Dict[str, Any]) -> int:
        """Insert a fiction (no-op if it exists) and return its id."""
        pass

    @abstractmethod
    async def append_snapshot_entries(self, entries: Sequence[SnapshotEntry]) -> int:
        """Append rank rows; returns the number of rows written."""
        pass

    @abstractmethod
    async def append_history_entries(self, entries: Sequence[FictionHistoryEntry]) -> int:
        """Append stats rows and refresh the fiction records they belong to."""
        pass

    @abstractmethod
    async def get_entities_due_for_update(self, limit: int) -> List[WorkItem]:
        """Fictions with no stats row inside the freshness window."""
        pass

    @abstractmethod
    async def get_genres_due_for_update(self, genres: Sequence[str]) -> List[str]:
        """Subset of ``genres`` whose newest rank snapshot is stale, in input order."""
        pass

    @abstractmethod
    async def record_failed_attempt(self, fiction_id: int, code: str) -> None:
        pass

    @abstractmethod
    async def mark_gone(self, fiction_id: int) -> None:
        """Tombstone a fiction that 404s upstream so it is no longer due."""
        pass

    @abstractmethod
    async def get_snapshot_entries(
        self, genre: str, since: Optional[datetime] = None
    ) -> List[SnapshotEntry]:
        """Rank rows of one genre ordered by ``captured_at`` then position."""
        pass

    @abstractmethod
    async def get_capture_days(self, genre: str, limit: int) -> List[date]:
        """Newest first, the distinct UTC dates on which ``genre`` was captured."""
        pass

    @abstractmethod
    async def get_latest_snapshot(self) -> List[SnapshotEntry]:
        """For every genre, the rows of its newest capture."""
        pass
