"""SQLite key/value cache for the public-site aggregate.

``aiosqlite.Error`` is handled inside every method. A failed read comes back
as ``None``, which callers see as a miss. A failed write is logged and comes
back as ``False``. Storage errors are never raised to callers. A Cache
built without a connection behaves as an always-empty store.

Keys live under a versioned prefix (``construo_v1.4_events``). Bumping the
configured version orphans every older entry; ``clear_stale_versions``
reclaims that space.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime
from typing import Any

import aiosqlite
import structlog

log = structlog.get_logger()

KEY_NAMESPACE = "construo_v"

_CREATE_KV_TABLE = """
CREATE TABLE IF NOT EXISTS kv_cache (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  TEXT NOT NULL
)
"""


def _is_quota_error(exc: aiosqlite.Error) -> bool:
    if getattr(exc, "sqlite_errorcode", None) == sqlite3.SQLITE_FULL:
        return True
    return "database or disk is full" in str(exc)


class Cache:
    """Versioned key/value store backed by a single SQLite table."""

    def __init__(
        self,
        db: aiosqlite.Connection | None,
        version: str = "1.4",
        max_page_count: int | None = None,
    ) -> None:
        self._db = db
        self.version = version
        self.prefix = f"{KEY_NAMESPACE}{version}_"
        self._max_page_count = max_page_count
        self._stale_versions_cleared = False

    @property
    def available(self) -> bool:
        return self._db is not None

    async def init_db(self) -> None:
        """Create the table and set WAL mode. Called once at startup."""
        if self._db is None:
            log.info("cache_disabled", reason="no_persistent_storage")
            return
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_KV_TABLE)
        if self._max_page_count is not None:
            await self._db.execute(f"PRAGMA max_page_count = {int(self._max_page_count)}")
        await self._db.commit()

    def _full_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    # ------------------------------------------------------------------
    # Reads and writes
    # ------------------------------------------------------------------

    async def read(self, key: str) -> Any | None:
        """Return the stored value, or ``None`` when absent, corrupt or unreadable."""
        if self._db is None:
            return None
        full_key = self._full_key(key)
        try:
            cursor = await self._db.execute(
                "SELECT value FROM kv_cache WHERE key = ?", (full_key,)
            )
            row = await cursor.fetchone()
        except aiosqlite.Error:
            log.warning("cache_read_error", key=full_key, exc_info=True)
            return None
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except ValueError:
            log.warning("cache_entry_corrupt", key=full_key)
            return None

    async def save(self, key: str, value: Any) -> bool:
        """Best-effort write. Returns False instead of raising.

        When the store is out of space, every entry under the current version
        is cleared and the write is retried exactly once.
        """
        if self._db is None:
            return False
        full_key = self._full_key(key)
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError):
            log.warning("cache_serialize_error", key=full_key, exc_info=True)
            return False

        try:
            await self._upsert(full_key, payload)
            return True
        except aiosqlite.Error as exc:
            if not _is_quota_error(exc):
                log.warning("cache_write_error", key=full_key, exc_info=True)
                return False
            log.warning("cache_quota_exceeded", key=full_key, size=len(payload))

        await self.clear_all()
        try:
            await self._upsert(full_key, payload)
            return True
        except aiosqlite.Error:
            log.warning("cache_write_retry_failed", key=full_key, exc_info=True)
            return False

    async def _upsert(self, full_key: str, payload: str) -> None:
        assert self._db is not None
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO kv_cache (key, value, updated_at) VALUES (?, ?, ?)",
                (full_key, payload, datetime.now(UTC).isoformat()),
            )
            await self._db.commit()
        except aiosqlite.Error:
            await self._rollback()
            raise

    async def _rollback(self) -> None:
        assert self._db is not None
        try:
            await self._db.rollback()
        except aiosqlite.Error:
            log.debug("cache_rollback_error", exc_info=True)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def clear_all(self) -> int:
        """Delete every entry under the current version prefix. Non-fatal on failure."""
        if self._db is None:
            return 0
        try:
            cursor = await self._db.execute(
                "DELETE FROM kv_cache WHERE substr(key, 1, ?) = ?",
                (len(self.prefix), self.prefix),
            )
            deleted = cursor.rowcount
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_clear_error", prefix=self.prefix, exc_info=True)
            return 0
        log.info("cache_cleared", prefix=self.prefix, deleted=deleted)
        return deleted

    async def clear_stale_versions(self) -> int:
        """Delete entries written under any other version. Runs once per instance."""
        if self._db is None or self._stale_versions_cleared:
            return 0
        self._stale_versions_cleared = True
        try:
            cursor = await self._db.execute(
                "DELETE FROM kv_cache WHERE key GLOB ? AND substr(key, 1, ?) != ?",
                (f"{KEY_NAMESPACE}*", len(self.prefix), self.prefix),
            )
            deleted = cursor.rowcount
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_stale_cleanup_error", exc_info=True)
            return 0
        if deleted:
            log.info("cache_stale_versions_cleared", deleted=deleted, current=self.version)
        return deleted

    async def count(self) -> int:
        """Number of entries under the current version prefix."""
        if self._db is None:
            return 0
        try:
            cursor = await self._db.execute(
                "SELECT COUNT(*) FROM kv_cache WHERE substr(key, 1, ?) = ?",
                (len(self.prefix), self.prefix),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error:
            log.warning("cache_read_error", key="count", exc_info=True)
            return 0
        return int(row[0]) if row else 0
