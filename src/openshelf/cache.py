"""SQLite response cache backing the read-through fetcher.

All cache operations catch ``aiosqlite.Error`` internally and degrade
gracefully: read failures and undecodable rows return ``None`` (treated as a
cache miss by callers), write failures are logged and ignored (the fetched
response is still returned). Infrastructure errors never cross the Cache
class boundary, so losing the database surfaces as a miss, never as corrupted
data.

Expiry is decided by the caller from ``CacheEntry.timestamp``; the store
itself never evicts on write.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import aiosqlite
import structlog
from pydantic import ValidationError

from openshelf.models.cache import CacheEntry

log = structlog.get_logger()

_CREATE_CACHE_TABLE = """
CREATE TABLE IF NOT EXISTS http_cache (
    key          TEXT PRIMARY KEY,
    body         TEXT NOT NULL,
    status       INTEGER NOT NULL,
    status_text  TEXT NOT NULL DEFAULT '',
    headers      TEXT NOT NULL DEFAULT '{}',
    timestamp    TEXT NOT NULL
)
"""

_CREATE_CACHE_INDEX = "CREATE INDEX IF NOT EXISTS idx_cache_timestamp ON http_cache(timestamp)"


class Cache:
    """SQLite-backed HTTP response cache implementing CacheProtocol."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_CACHE_TABLE)
        await self._db.execute(_CREATE_CACHE_INDEX)
        await self._db.commit()

    async def get(self, key: str) -> CacheEntry | None:
        """Read an entry. Returns ``None`` on cache miss or read failure."""
        try:
            cursor = await self._db.execute(
                "SELECT key, body, status, status_text, headers, timestamp "
                "FROM http_cache WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error:
            log.warning("cache_read_error", key=key, exc_info=True)
            return None

        if row is None:
            return None

        try:
            return CacheEntry(
                key=row[0],
                body=row[1],
                status=row[2],
                status_text=row[3],
                headers=json.loads(row[4]),
                timestamp=datetime.fromisoformat(row[5]),
            )
        except (ValueError, ValidationError):
            # json.JSONDecodeError is a ValueError subclass
            log.warning("cache_entry_corrupt", key=key, exc_info=True)
            return None

    async def put(self, entry: CacheEntry) -> None:
        """Upsert an entry. Non-fatal on failure."""
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO http_cache "
                "(key, body, status, status_text, headers, timestamp) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    entry.key,
                    entry.body,
                    entry.status,
                    entry.status_text,
                    json.dumps(entry.headers, sort_keys=True),
                    entry.timestamp.isoformat(),
                ),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_write_error", key=entry.key, exc_info=True)

    async def delete(self, key: str) -> None:
        """Remove an entry if present. Non-fatal on failure."""
        try:
            await self._db.execute("DELETE FROM http_cache WHERE key = ?", (key,))
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_delete_error", key=key, exc_info=True)

    async def purge_expired(self, ttl: timedelta) -> int:
        """Delete every entry older than ``ttl``. Returns rows removed, 0 on failure."""
        try:
            cutoff = (datetime.now(UTC) - ttl).isoformat()
            cursor = await self._db.execute(
                "DELETE FROM http_cache WHERE timestamp <= ?", (cutoff,)
            )
            deleted = cursor.rowcount
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_purge_error", exc_info=True)
            return 0

        log.info("cache_purge_complete", deleted=deleted)
        return deleted
