"""
Rank-movement diff engine.

Compares two adjacent snapshots of one ranked list and classifies every
entity as new, dropped or moved.  Snapshots are bucketed per UTC day;
when a day holds several scrape passes the latest row per entity wins.
"""

import logging
from collections import OrderedDict
from datetime import date, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from rankwatch.models import MovementRecord, SnapshotEntry


logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 13


def _day(entry: SnapshotEntry) -> date:
    captured = entry.captured_at
    if captured.tzinfo is not None:
        captured = captured.astimezone(timezone.utc)
    return captured.date()


def latest_per_entity(entries: Iterable[SnapshotEntry]) -> List[SnapshotEntry]:
    """Drop stale duplicates, keeping each entity's most recent row.

    First-seen order is preserved; equal timestamps keep the earlier row.
    """
    latest: "OrderedDict[int, SnapshotEntry]" = OrderedDict()
    for entry in entries:
        seen = latest.get(entry.entity_id)
        if seen is None or entry.captured_at > seen.captured_at:
            latest[entry.entity_id] = entry
    return list(latest.values())


def group_by_day(entries: Iterable[SnapshotEntry]) -> List[Tuple[date, List[SnapshotEntry]]]:
    """Bucket rows by capture day, oldest day first, each bucket sorted by position."""
    buckets: Dict[date, List[SnapshotEntry]] = {}
    for entry in entries:
        buckets.setdefault(_day(entry), []).append(entry)

    days = []
    for day in sorted(buckets):
        rows = latest_per_entity(buckets[day])
        rows.sort(key=lambda e: e.position)
        days.append((day, rows))
    return days


def _sort_key(record: MovementRecord):
    if record.is_dropped:
        return (1, record.dropped_from or 0)
    return (0, record.current_position)


def diff(
    current: Sequence[SnapshotEntry],
    previous: Optional[Sequence[SnapshotEntry]] = None,
) -> List[MovementRecord]:
    """Classify ``current`` against ``previous``.

    Without a previous snapshot every entry is new.  Otherwise entities
    found in both carry both positions, entities only in ``current`` are
    new, and whatever is left of ``previous`` is dropped.  Dropped rows
    sort after everything else, the rest ascending by current position.
    """
    current = latest_per_entity(current)

    if previous is None:
        records = [
            MovementRecord(entity_id=e.entity_id, current_position=e.position, is_new=True)
            for e in current
        ]
        records.sort(key=_sort_key)
        return records

    previous_by_entity = {e.entity_id: e for e in latest_per_entity(previous)}

    records: List[MovementRecord] = []
    for entry in current:
        before = previous_by_entity.pop(entry.entity_id, None)
        if before is not None:
            records.append(
                MovementRecord(
                    entity_id=entry.entity_id,
                    current_position=entry.position,
                    previous_position=before.position,
                )
            )
        else:
            records.append(
                MovementRecord(entity_id=entry.entity_id, current_position=entry.position, is_new=True)
            )

    for entity_id, before in previous_by_entity.items():
        records.append(
            MovementRecord(entity_id=entity_id, is_dropped=True, dropped_from=before.position)
        )

    records.sort(key=_sort_key)
    return records


def movement_timeline(
    entries: Iterable[SnapshotEntry],
) -> List[Tuple[date, List[MovementRecord]]]:
    """Diff every day against the day before it.

    The first day has nothing to compare with, so all its rows are new.
    """
    timeline = []
    previous: Optional[List[SnapshotEntry]] = None
    for day, rows in group_by_day(entries):
        timeline.append((day, diff(rows, previous)))
        previous = rows
    return timeline


def latest_movement(entries: Iterable[SnapshotEntry]) -> List[MovementRecord]:
    """Movement between the two most recent days, or an empty list with no data."""
    days = group_by_day(entries)
    if not days:
        return []
    current = days[-1][1]
    previous = days[-2][1] if len(days) > 1 else None
    return diff(current, previous)


def focus_window(
    movements: Sequence[MovementRecord],
    followed_id: Optional[int] = None,
    size: int = DEFAULT_WINDOW_SIZE,
) -> List[MovementRecord]:
    """Slice an already-sorted movement list around a followed entity.

    With no ``followed_id`` the list comes back whole.  If the entity is
    absent the trailing ``size`` rows are returned.  Otherwise the window
    holds ``min(size, len)`` rows and starts seven rows above the entity
    for the default size, shifting inward at either end of the list.
    """
    rows = list(movements)
    if followed_id is None:
        return rows
    if size <= 0:
        return []

    width = min(size, len(rows))
    index = next((i for i, r in enumerate(rows) if r.entity_id == followed_id), None)
    if index is None:
        logger.debug(f"Entity {followed_id} not in list; returning trailing {width} rows")
        return rows[len(rows) - width:]

    before = min(size // 2 + 1, width - 1)
    start = max(0, min(index - before, len(rows) - width))
    return rows[start:start + width]
