"""
SQLite persistence for fictions, their stats history and Rising Stars ranks.
"""

import json
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

import aiosqlite

from rankwatch.errors import ConfigurationError
from rankwatch.infra.db import Database
from rankwatch.interfaces import FictionStore
from rankwatch.models import (
    FictionHistoryEntry,
    FictionRecord,
    FictionStats,
    SnapshotEntry,
    WorkItem,
    utcnow,
)
from rankwatch.settings import FreshnessSettings


logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

STAT_COLUMNS = list(FictionStats.model_fields)

FICTION_COLUMNS = {
    "royalroad_id", "title", "author_name", "author_id", "author_avatar",
    "description", "image_url", "status", "type", "tags", "warnings", *STAT_COLUMNS,
}

_STATS_DDL = ",\n".join(
    f"    {col} {'REAL' if col.endswith('score') else 'INTEGER'} NOT NULL DEFAULT 0"
    for col in STAT_COLUMNS
)

SCHEMA = [
    f"""
    CREATE TABLE IF NOT EXISTS fiction (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        royalroad_id TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL DEFAULT '',
        author_name TEXT NOT NULL DEFAULT '',
        author_id TEXT NOT NULL DEFAULT '',
        author_avatar TEXT NOT NULL DEFAULT '',
        description TEXT NOT NULL DEFAULT '',
        image_url TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT '',
        type TEXT NOT NULL DEFAULT '',
        tags TEXT NOT NULL DEFAULT '[]',
        warnings TEXT NOT NULL DEFAULT '[]',
{_STATS_DDL},
        gone_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS fiction_history (
        fiction_id INTEGER NOT NULL,
        royalroad_id TEXT NOT NULL,
        title TEXT NOT NULL DEFAULT '',
        image_url TEXT NOT NULL DEFAULT '',
        description TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT '',
        type TEXT NOT NULL DEFAULT '',
        tags TEXT NOT NULL DEFAULT '[]',
        warnings TEXT NOT NULL DEFAULT '[]',
{_STATS_DDL},
        captured_at TEXT NOT NULL,
        PRIMARY KEY (fiction_id, captured_at)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rising_stars (
        fiction_id INTEGER NOT NULL,
        genre TEXT NOT NULL,
        position INTEGER NOT NULL,
        captured_at TEXT NOT NULL,
        PRIMARY KEY (fiction_id, genre, captured_at)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS failed_attempts (
        fiction_id INTEGER PRIMARY KEY,
        code TEXT NOT NULL,
        attempts INTEGER NOT NULL DEFAULT 1,
        attempted_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_fiction_history_captured ON fiction_history(fiction_id, captured_at)",
    "CREATE INDEX IF NOT EXISTS idx_rising_stars_genre ON rising_stars(genre, captured_at)",
]


def format_timestamp(value: datetime) -> str:
    """UTC text form that sorts lexicographically in capture order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def fiction_to_row(record: FictionRecord) -> Dict[str, Any]:
    """Flatten an extracted record into ``fiction`` table columns."""
    row = {
        "royalroad_id": record.id,
        "title": record.title,
        "author_name": record.author.name,
        "author_id": record.author.id,
        "author_avatar": record.author.avatar,
        "description": record.description,
        "image_url": record.image,
        "status": record.status,
        "type": record.type,
        "tags": list(record.tags),
        "warnings": list(record.warnings),
    }
    row.update(record.stats.model_dump())
    return row


def _row_to_dict(row: aiosqlite.Row) -> Dict[str, Any]:
    data = dict(row)
    for key in ("tags", "warnings"):
        if key in data:
            data[key] = json.loads(data[key] or "[]")
    return data


class SqliteFictionStore(FictionStore):
    """``FictionStore`` on a local SQLite file.

    A fiction is due for a stats refresh when its newest history row is
    older than ``freshness.fiction_history_hours`` and it has not failed
    within ``freshness.failed_retry_minutes``.  A genre is due when its
    newest rank capture is older than ``freshness.rising_stars_minutes``.
    Fictions marked gone (404 upstream) are never due again.
    """

    def __init__(
        self,
        db_path: str = "rankwatch.db",
        freshness: Optional[FreshnessSettings] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.db = Database(db_path, schema=SCHEMA)
        self.freshness = freshness or FreshnessSettings()
        self._now = now

    @property
    def name(self) -> str:
        return "SqliteFictionStore"

    async def connect(self) -> None:
        try:
            await self.db.connect()
        except (aiosqlite.Error, OSError) as e:
            raise ConfigurationError(f"Cannot open database {self.db.db_path}: {e}") from e

    async def close(self) -> None:
        await self.db.close()

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _cutoff(self, **delta) -> str:
        return format_timestamp(self._now() - timedelta(**delta))

    # ------------------------------------------------------------------- #
    # fictions
    # ------------------------------------------------------------------- #
    async def get_fiction_by_key(self, royalroad_id: str) -> Optional[Dict[str, Any]]:
        row = await self.db.fetch_one(
            "SELECT * FROM fiction WHERE royalroad_id = ?", (str(royalroad_id),)
        )
        return _row_to_dict(row) if row else None

    async def create_fiction(self, fiction: Dict[str, Any]) -> int:
        royalroad_id = str(fiction.get("royalroad_id") or "")
        if not royalroad_id:
            raise ValueError("fiction needs a royalroad_id")

        now = format_timestamp(self._now())
        data = {k: v for k, v in fiction.items() if k in FICTION_COLUMNS and v is not None}
        data["royalroad_id"] = royalroad_id
        for key in ("tags", "warnings"):
            if key in data:
                data[key] = json.dumps(list(data[key]))
        data["created_at"] = now
        data["updated_at"] = now

        columns = list(data)
        async with self.db.transaction() as conn:
            await conn.execute(
                f"INSERT INTO fiction ({', '.join(columns)}) "
                f"VALUES ({', '.join('?' * len(columns))}) "
                "ON CONFLICT(royalroad_id) DO NOTHING",
                tuple(data[c] for c in columns),
            )
            cursor = await conn.execute(
                "SELECT id FROM fiction WHERE royalroad_id = ?", (royalroad_id,)
            )
            row = await cursor.fetchone()
        logger.debug(f"Fiction {royalroad_id} stored as id {row['id']}")
        return row["id"]

    # ------------------------------------------------------------------- #
    # appends
    # ------------------------------------------------------------------- #
    async def append_snapshot_entries(self, entries: Sequence[SnapshotEntry]) -> int:
        if not entries:
            return 0
        await self.db.executemany(
            """
            INSERT INTO rising_stars (fiction_id, genre, position, captured_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(fiction_id, genre, captured_at) DO UPDATE SET position = excluded.position
            """,
            (
                (e.entity_id, e.genre, e.position, format_timestamp(e.captured_at))
                for e in entries
            ),
        )
        logger.info(f"Saved {len(entries)} Rising Stars rows")
        return len(entries)

    async def append_history_entries(self, entries: Sequence[FictionHistoryEntry]) -> int:
        if not entries:
            return 0

        history_columns = [
            "fiction_id", "royalroad_id", "title", "image_url", "description",
            "status", "type", "tags", "warnings", *STAT_COLUMNS, "captured_at",
        ]
        refresh_columns = [
            "title", "image_url", "description", "status", "type",
            "tags", "warnings", *STAT_COLUMNS,
        ]
        insert_sql = (
            f"INSERT INTO fiction_history ({', '.join(history_columns)}) "
            f"VALUES ({', '.join('?' * len(history_columns))}) "
            "ON CONFLICT(fiction_id, captured_at) DO UPDATE SET "
            + ", ".join(f"{c} = excluded.{c}" for c in history_columns[2:-1])
        )
        refresh_sql = (
            "UPDATE fiction SET "
            + ", ".join(f"{c} = ?" for c in refresh_columns)
            + ", gone_at = NULL, updated_at = ? WHERE id = ?"
        )

        async with self.db.transaction() as conn:
            for entry in entries:
                values = entry.stats.model_dump()
                values.update(
                    fiction_id=entry.fiction_id,
                    royalroad_id=entry.royalroad_id,
                    title=entry.title,
                    image_url=entry.image_url,
                    description=entry.description,
                    status=entry.status,
                    type=entry.type,
                    tags=json.dumps(list(entry.tags)),
                    warnings=json.dumps(list(entry.warnings)),
                    captured_at=format_timestamp(entry.captured_at),
                )
                await conn.execute(insert_sql, tuple(values[c] for c in history_columns))
                await conn.execute(
                    refresh_sql,
                    tuple(values[c] for c in refresh_columns)
                    + (values["captured_at"], entry.fiction_id),
                )
                await conn.execute(
                    "DELETE FROM failed_attempts WHERE fiction_id = ?", (entry.fiction_id,)
                )

        logger.info(f"Saved {len(entries)} fiction history rows")
        return len(entries)

    async def record_failed_attempt(self, fiction_id: int, code: str) -> None:
        async with self.db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO failed_attempts (fiction_id, code, attempts, attempted_at)
                VALUES (?, ?, 1, ?)
                ON CONFLICT(fiction_id) DO UPDATE SET
                    code = excluded.code,
                    attempts = failed_attempts.attempts + 1,
                    attempted_at = excluded.attempted_at
                """,
                (fiction_id, code, format_timestamp(self._now())),
            )

    async def mark_gone(self, fiction_id: int) -> None:
        now = format_timestamp(self._now())
        async with self.db.transaction() as conn:
            await conn.execute(
                "UPDATE fiction SET gone_at = ?, updated_at = ? WHERE id = ?", (now, now, fiction_id)
            )
            await conn.execute("DELETE FROM failed_attempts WHERE fiction_id = ?", (fiction_id,))
        logger.info(f"Fiction {fiction_id} marked gone")

    # ------------------------------------------------------------------- #
    # work lists
    # ------------------------------------------------------------------- #
    async def get_entities_due_for_update(self, limit: int) -> List[WorkItem]:
        stale_before = self._cutoff(hours=self.freshness.fiction_history_hours)
        retry_before = self._cutoff(minutes=self.freshness.failed_retry_minutes)
        rows = await self.db.fetch_all(
            """
            SELECT f.id, f.royalroad_id, f.title, MAX(h.captured_at) AS last_captured_at
            FROM fiction f
            LEFT JOIN fiction_history h ON h.fiction_id = f.id
            LEFT JOIN failed_attempts fa ON fa.fiction_id = f.id
            WHERE f.gone_at IS NULL AND (fa.attempted_at IS NULL OR fa.attempted_at < ?)
            GROUP BY f.id
            HAVING MAX(h.captured_at) IS NULL OR MAX(h.captured_at) < ?
            ORDER BY MAX(h.captured_at) IS NOT NULL, MAX(h.captured_at), f.id
            LIMIT ?
            """,
            (retry_before, stale_before, limit),
        )
        return [
            WorkItem(
                fiction_id=row["id"],
                royalroad_id=row["royalroad_id"],
                title=row["title"],
                last_captured_at=(
                    parse_timestamp(row["last_captured_at"]) if row["last_captured_at"] else None
                ),
            )
            for row in rows
        ]

    async def get_genres_due_for_update(self, genres: Sequence[str]) -> List[str]:
        stale_before = self._cutoff(minutes=self.freshness.rising_stars_minutes)
        rows = await self.db.fetch_all(
            "SELECT genre, MAX(captured_at) AS latest FROM rising_stars GROUP BY genre"
        )
        latest = {row["genre"]: row["latest"] for row in rows}
        return [g for g in genres if latest.get(g) is None or latest[g] < stale_before]

    # ------------------------------------------------------------------- #
    # reads
    # ------------------------------------------------------------------- #
    @staticmethod
    def _snapshot(row: aiosqlite.Row) -> SnapshotEntry:
        return SnapshotEntry(
            entity_id=row["fiction_id"],
            genre=row["genre"],
            position=row["position"],
            captured_at=parse_timestamp(row["captured_at"]),
        )

    async def get_snapshot_entries(
        self, genre: str, since: Optional[datetime] = None
    ) -> List[SnapshotEntry]:
        sql = "SELECT fiction_id, genre, position, captured_at FROM rising_stars WHERE genre = ?"
        params: tuple = (genre,)
        if since is not None:
            sql += " AND captured_at >= ?"
            params += (format_timestamp(since),)
        sql += " ORDER BY captured_at, position"
        rows = await self.db.fetch_all(sql, params)
        return [self._snapshot(r) for r in rows]

    async def get_capture_days(self, genre: str, limit: int) -> List[date]:
        rows = await self.db.fetch_all(
            "SELECT DISTINCT substr(captured_at, 1, 10) AS day FROM rising_stars "
            "WHERE genre = ? ORDER BY day DESC LIMIT ?",
            (genre, limit),
        )
        return [date.fromisoformat(row["day"]) for row in rows]

    async def get_latest_snapshot(self) -> List[SnapshotEntry]:
        rows = await self.db.fetch_all(
            """
            SELECT rs.fiction_id, rs.genre, rs.position, rs.captured_at
            FROM rising_stars rs
            JOIN (
                SELECT genre, MAX(captured_at) AS latest FROM rising_stars GROUP BY genre
            ) newest ON newest.genre = rs.genre AND newest.latest = rs.captured_at
            ORDER BY rs.genre, rs.position
            """
        )
        return [self._snapshot(r) for r in rows]
