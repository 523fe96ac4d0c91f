"""
Distance-to-top-50 estimate for fictions not (yet) on the main Rising Stars list.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from pydantic import BaseModel, ConfigDict

from rankwatch.models import SnapshotEntry


logger = logging.getLogger(__name__)

MAIN_GENRE = "main"
MAIN_LIST_SIZE = 50


class PositionEstimate(BaseModel):
    model_config = ConfigDict(frozen=True)

    fiction_id: int
    is_on_main: bool
    main_position: Optional[int] = None
    estimated_position: int
    fictions_ahead: int
    fictions_to_climb: int
    captured_at: Optional[datetime] = None

    def to_dict(self) -> Dict:
        return {
            "fictionId": self.fiction_id,
            "isOnMain": self.is_on_main,
            "mainPosition": self.main_position,
            "estimatedPosition": self.estimated_position,
            "fictionsAhead": self.fictions_ahead,
            "fictionsToClimb": self.fictions_to_climb,
            "lastUpdated": self.captured_at.isoformat() if self.captured_at else None,
        }


def estimate_position(
    entries: Iterable[SnapshotEntry],
    fiction_id: int,
    main_genre: str = MAIN_GENRE,
    main_size: int = MAIN_LIST_SIZE,
) -> PositionEstimate:
    """Estimate where ``fiction_id`` would land on the main list.

    ``entries`` is one capture of every genre list.  Everything on main is
    ahead of a fiction that isn't there; so is everyone above it in each
    genre it appears in, and, for the remaining genres (alphabetically),
    everyone ranked above a fiction already counted as ahead.
    """
    by_genre: Dict[str, List[SnapshotEntry]] = defaultdict(list)
    for entry in entries:
        by_genre[entry.genre].append(entry)
    for rows in by_genre.values():
        rows.sort(key=lambda e: e.position)

    captured_at = max((e.captured_at for rows in by_genre.values() for e in rows), default=None)

    on_main = next((e for e in by_genre.get(main_genre, []) if e.entity_id == fiction_id), None)
    if on_main is not None:
        return PositionEstimate(
            fiction_id=fiction_id,
            is_on_main=True,
            main_position=on_main.position,
            estimated_position=on_main.position,
            fictions_ahead=on_main.position - 1,
            fictions_to_climb=0,
            captured_at=captured_at,
        )

    ahead: Set[int] = {e.entity_id for e in by_genre.get(main_genre, [])}

    own_positions = {
        genre: next(e.position for e in rows if e.entity_id == fiction_id)
        for genre, rows in by_genre.items()
        if any(e.entity_id == fiction_id for e in rows)
    }
    for genre, position in own_positions.items():
        ahead.update(e.entity_id for e in by_genre[genre] if e.position < position)

    for genre in sorted(by_genre):
        if genre in own_positions:
            continue
        rows = by_genre[genre]
        cutoff = max((e.position for e in rows if e.entity_id in ahead), default=None)
        if cutoff is None:
            continue
        ahead.update(e.entity_id for e in rows if e.position < cutoff)

    count = len(ahead)
    logger.debug(f"Fiction {fiction_id}: {count} fictions ahead across {len(by_genre)} lists")
    return PositionEstimate(
        fiction_id=fiction_id,
        is_on_main=False,
        estimated_position=count + 1,
        fictions_ahead=count,
        fictions_to_climb=max(0, count - (main_size - 1)),
        captured_at=captured_at,
    )
