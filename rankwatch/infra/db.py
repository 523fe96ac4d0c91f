"""
Database infrastructure with SQLite and async support.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import aiosqlite


logger = logging.getLogger(__name__)


class Database:
    """Async SQLite database wrapper.

    ``schema`` statements run on every connect, so they must be idempotent
    (``CREATE ... IF NOT EXISTS``).
    """

    def __init__(self, db_path: str = "rankwatch.db", schema: Sequence[str] = ()):
        self.db_path = Path(db_path)
        self._schema = list(schema)
        self._connection: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Open the file (creating its directory) and apply the schema."""
        if self._connection:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self.db_path, timeout=30)
        self._connection.row_factory = aiosqlite.Row
        # WAL lets the scheduled jobs read while another invocation writes
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA busy_timeout=30000;")
        for statement in self._schema:
            await self._connection.execute(statement)
        await self._connection.commit()
        logger.debug(f"Opened {self.db_path} ({len(self._schema)} schema statements)")

    async def close(self) -> None:
        if self._connection:
            await self._connection.close()
            self._connection = None

    @asynccontextmanager
    async def transaction(self):
        """Commit on success, roll back on any error."""
        if not self._connection:
            await self.connect()

        if not self._connection.in_transaction:
            await self._connection.execute("BEGIN")
        try:
            yield self._connection
            await self._connection.commit()
        except Exception:
            await self._connection.rollback()
            raise

    async def execute(self, sql: str, params: Tuple[Any, ...] = ()) -> aiosqlite.Cursor:
        if not self._connection:
            await self.connect()
        return await self._connection.execute(sql, params)

    async def executemany(self, sql: str, rows: Iterable[Tuple[Any, ...]]) -> None:
        """Execute a statement once per row inside one transaction."""
        async with self.transaction() as conn:
            await conn.executemany(sql, list(rows))

    async def fetch_one(self, sql: str, params: Tuple[Any, ...] = ()) -> Optional[aiosqlite.Row]:
        cursor = await self.execute(sql, params)
        return await cursor.fetchone()

    async def fetch_all(self, sql: str, params: Tuple[Any, ...] = ()) -> List[aiosqlite.Row]:
        cursor = await self.execute(sql, params)
        return await cursor.fetchall()
