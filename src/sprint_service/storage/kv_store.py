"""SQLite-backed string key-value store for per-user local data."""

import asyncio
from pathlib import Path

import aiosqlite

from sprint_service.utils.logging import get_logger

logger = get_logger(__name__)


class KeyValueStore:
    """Flat string-to-string store, the local equivalent of browser storage.

    One database file may hold the data of many users; callers namespace
    their keys.
    """

    def __init__(self, path: str | Path = ":memory:") -> None:
        """Initialize key-value store.

        Args:
            path: SQLite database file (":memory:" for an ephemeral store)
        """
        self.path = str(path)
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the database and create the entries table."""
        async with self._lock:
            if self._db is not None:
                return
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self.path)
            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS entries (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            await self._db.commit()
            logger.info("kv_store_initialized", path=self.path)

    async def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        assert self._db is not None
        return self._db

    async def get(self, key: str) -> str | None:
        db = await self._conn()
        cursor = await db.execute("SELECT value FROM entries WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        db = await self._conn()
        await db.execute(
            """
            INSERT INTO entries (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )
        await db.commit()

    async def delete(self, key: str) -> None:
        db = await self._conn()
        await db.execute("DELETE FROM entries WHERE key = ?", (key,))
        await db.commit()

    async def keys(self, prefix: str = "") -> list[str]:
        db = await self._conn()
        cursor = await db.execute(
            "SELECT key FROM entries WHERE substr(key, 1, ?) = ? ORDER BY key",
            (len(prefix), prefix),
        )
        return [row[0] for row in await cursor.fetchall()]

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
