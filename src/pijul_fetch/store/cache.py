"""Fetch cache: persistent key -> (info, store path) mapping in SQLite.

Two kinds of entries share one table:
- final entries (locked keys) are written once and never replaced
- provisional entries (impure keys) are replaced by each new resolution
  and expire after a configurable TTL
"""
import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Protocol

from pydantic import BaseModel, ConfigDict

from pijul_fetch.core.errors import CacheError, StoreError
from pijul_fetch.store.content import StorePath

logger = logging.getLogger(__name__)

CACHE_SCHEMA = """
    CREATE TABLE IF NOT EXISTS fetch_cache (
        key TEXT PRIMARY KEY,
        info TEXT NOT NULL,
        store_path TEXT NOT NULL,
        immutable INTEGER NOT NULL,
        timestamp INTEGER NOT NULL
    )
"""


def canonical_key(key: Mapping[str, object]) -> str:
    """Canonical JSON for a key: sorted keys, compact separators."""
    return json.dumps(dict(key), sort_keys=True, separators=(",", ":"))


class CacheEntry(BaseModel):
    """Cached metadata plus the store path it describes."""

    model_config = ConfigDict(frozen=True)

    info: Dict[str, object]
    store_path: StorePath
    immutable: bool
    timestamp: int


class FetchCache(Protocol):
    """Interface the resolver relies on."""

    def lookup(self, key: Mapping[str, object]) -> Optional[CacheEntry]:
        ...

    def add(
        self,
        key: Mapping[str, object],
        info: Mapping[str, object],
        store_path: StorePath,
        immutable: bool,
    ) -> None:
        ...


class SqliteFetchCache:
    """SQLite-backed fetch cache.

    Args:
        db_path: Path to the SQLite database (created on first use)
        ttl: Seconds a provisional entry stays fresh; None disables expiry
        clock: Time source returning seconds since the epoch
    """

    def __init__(
        self,
        db_path: Path,
        ttl: Optional[int] = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.db_path = Path(db_path)
        self.ttl = ttl
        self.clock = clock
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path), timeout=30)

    def _ensure_schema(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = self._connect()
            try:
                conn.execute(CACHE_SCHEMA)
                conn.commit()
            finally:
                conn.close()
        except (OSError, sqlite3.Error) as e:
            raise CacheError(f"cannot open fetch cache {self.db_path}: {e}")

    def lookup(self, key: Mapping[str, object]) -> Optional[CacheEntry]:
        """Return the entry for ``key``, or None if absent or expired."""
        try:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT info, store_path, immutable, timestamp FROM fetch_cache WHERE key = ?",
                    (canonical_key(key),),
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CacheError(f"cache lookup failed: {e}")

        if row is None:
            return None

        info, store_path, immutable, timestamp = row
        if not immutable and self.ttl is not None:
            if self.clock() - timestamp >= self.ttl:
                logger.debug(f"Cache entry for {canonical_key(key)} expired")
                return None

        try:
            return CacheEntry(
                info=json.loads(info),
                store_path=StorePath.parse(store_path),
                immutable=bool(immutable),
                timestamp=timestamp,
            )
        except (ValueError, StoreError) as e:
            raise CacheError(f"corrupt cache entry for {canonical_key(key)}: {e}")

    def add(
        self,
        key: Mapping[str, object],
        info: Mapping[str, object],
        store_path: StorePath,
        immutable: bool,
    ) -> None:
        """Record ``info`` and ``store_path`` under ``key``.

        An existing final entry is left untouched; provisional entries are
        replaced.

        Raises:
            CacheError: if the write fails
        """
        try:
            conn = self._connect()
            try:
                conn.execute(
                    """
                    INSERT INTO fetch_cache (key, info, store_path, immutable, timestamp)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        info = excluded.info,
                        store_path = excluded.store_path,
                        immutable = excluded.immutable,
                        timestamp = excluded.timestamp
                    WHERE fetch_cache.immutable = 0
                    """,
                    (
                        canonical_key(key),
                        json.dumps(dict(info), sort_keys=True),
                        str(store_path),
                        int(immutable),
                        int(self.clock()),
                    ),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CacheError(f"cache write failed: {e}")

    def clear(self) -> int:
        """Delete all entries; returns the number removed."""
        try:
            conn = self._connect()
            try:
                removed = conn.execute("DELETE FROM fetch_cache").rowcount
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CacheError(f"cache clear failed: {e}")
        logger.info(f"Removed {removed} cache entries")
        return removed

    def stats(self) -> Dict[str, int]:
        """Count final and provisional entries."""
        try:
            conn = self._connect()
            try:
                rows = conn.execute(
                    "SELECT immutable, COUNT(*) FROM fetch_cache GROUP BY immutable"
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CacheError(f"cache stats failed: {e}")

        counts = {"final": 0, "provisional": 0}
        for immutable, count in rows:
            counts["final" if immutable else "provisional"] = count
        return counts
