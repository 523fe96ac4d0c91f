"""
Core data models for rankwatch.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class Author(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    id: str = ""
    avatar: str = ""


class FictionStats(BaseModel):
    """Numeric stats block of a fiction page. Scores are on a 0-5 scale."""
    model_config = ConfigDict(frozen=True)

    pages: int = 0
    ratings: int = 0
    followers: int = 0
    favorites: int = 0
    views: int = 0
    score: float = 0.0
    overall_score: float = 0.0
    style_score: float = 0.0
    story_score: float = 0.0
    grammar_score: float = 0.0
    character_score: float = 0.0
    total_views: int = 0
    average_views: int = 0


class FictionRecord(BaseModel):
    """Everything extracted from one fiction page."""
    model_config = ConfigDict(frozen=True)

    id: str = ""
    title: str = ""
    author: Author = Field(default_factory=Author)
    description: str = ""
    image: str = ""
    status: str = ""
    type: str = ""
    tags: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    stats: FictionStats = Field(default_factory=FictionStats)


class RisingStarEntry(BaseModel):
    """One row of a scraped ranked listing, before the fiction is resolved to a store id."""
    model_config = ConfigDict(frozen=True)

    royalroad_id: str
    title: str = ""
    author_name: str = ""
    image_url: str = ""
    genre: str
    position: int = Field(ge=1)
    captured_at: datetime


class SnapshotEntry(BaseModel):
    """Append-only rank row, unique per (entity_id, genre, captured_at)."""
    model_config = ConfigDict(frozen=True)

    entity_id: int
    genre: str
    position: int = Field(ge=1)
    captured_at: datetime


class FictionHistoryEntry(BaseModel):
    """Time-series row of a fiction's stats, also used to refresh the fiction itself."""
    model_config = ConfigDict(frozen=True)

    fiction_id: int
    royalroad_id: str
    title: str = ""
    image_url: str = ""
    description: str = ""
    status: str = ""
    type: str = ""
    tags: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    stats: FictionStats = Field(default_factory=FictionStats)
    captured_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_record(
        cls, fiction_id: int, record: FictionRecord, captured_at: Optional[datetime] = None
    ) -> "FictionHistoryEntry":
        return cls(
            fiction_id=fiction_id,
            royalroad_id=record.id,
            title=record.title,
            image_url=record.image,
            description=record.description,
            status=record.status,
            type=record.type,
            tags=record.tags,
            warnings=record.warnings,
            stats=record.stats,
            captured_at=captured_at or utcnow(),
        )


class MovementRecord(BaseModel):
    """How one entity relates across two adjacent snapshots.

    Exactly one of ``is_new``, ``previous_position`` and ``is_dropped``
    describes the relation.  Dropped rows carry no current position and
    remember their last rank in ``dropped_from`` for display only.
    """
    model_config = ConfigDict(frozen=True)

    entity_id: int
    current_position: Optional[int] = None
    previous_position: Optional[int] = None
    is_new: bool = False
    is_dropped: bool = False
    dropped_from: Optional[int] = None

    @property
    def delta(self) -> Optional[int]:
        """Positive when the entity rose in rank, negative when it fell."""
        if self.previous_position is None or self.current_position is None:
            return None
        return self.previous_position - self.current_position

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entityId": self.entity_id,
            "currentPosition": self.current_position,
            "previousPosition": self.previous_position,
            "isNew": self.is_new,
            "isDropped": self.is_dropped,
            "droppedFrom": self.dropped_from,
            "delta": self.delta,
        }


class WorkItem(BaseModel):
    """A fiction that is due for a detail refresh."""
    model_config = ConfigDict(frozen=True)

    fiction_id: int
    royalroad_id: str
    title: str = ""
    last_captured_at: Optional[datetime] = None


class ItemOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    GONE = "gone"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"


class ItemFailure(BaseModel):
    key: str
    code: str
    retryable: bool
    message: str = ""


class RunSummary(BaseModel):
    """Result of one orchestrator run.

    ``remaining_count > 0`` with no failures means the budget ran out and
    the caller should invoke again.
    """

    total_count: int = 0
    processed_count: int = 0
    saved_count: int = 0
    gone_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    execution_time_ms: int = 0
    failures: List[ItemFailure] = Field(default_factory=list)

    @property
    def remaining_count(self) -> int:
        return self.total_count - self.processed_count

    @property
    def completed(self) -> bool:
        return self.remaining_count == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processedCount": self.processed_count,
            "savedCount": self.saved_count,
            "totalCount": self.total_count,
            "remainingCount": self.remaining_count,
            "goneCount": self.gone_count,
            "failedCount": self.failed_count,
            "skippedCount": self.skipped_count,
            "failures": [f.model_dump() for f in self.failures],
            "executionTime": self.execution_time_ms,
        }
