"""Memoization caches for repository metadata and decoded manifests.

Entries never expire within a run. A `CacheStore` can persist caches to a
SQLite file so a later run starts warm.
"""

import contextlib
import json
import logging
import sqlite3
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Generic, Optional, TypeVar

from package_validator.models import Manifest, Repository

logger = logging.getLogger(__name__)

V = TypeVar("V")


class Cache(Generic[V]):
    """In-memory cache keyed by lower-cased strings.

    Values are stored JSON-encoded and decoded on every read, so a hit
    always returns a fresh object and a corrupt entry behaves like a miss.
    Access is guarded by a lock; concurrent writers to the same key are
    last-writer-wins.

    Attributes:
        name: Namespace used when persisting.
    """

    def __init__(
        self,
        name: str,
        encode: Callable[[V], Any],
        decode: Callable[[Any], V],
    ) -> None:
        self.name = name
        self._encode = encode
        self._decode = decode
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    @staticmethod
    def normalize_key(key: str) -> str:
        return key.lower()

    def get(self, key: str) -> Optional[V]:
        with self._lock:
            raw = self._data.get(self.normalize_key(key))
        if raw is None:
            return None
        try:
            return self._decode(json.loads(raw))
        except (json.JSONDecodeError, TypeError, KeyError, ValueError):
            logger.debug("Discarding undecodable cache entry %s", key)
            return None

    def set(self, key: str, value: V) -> None:
        encoded = json.dumps(self._encode(value), sort_keys=True)
        with self._lock:
            self._data[self.normalize_key(key)] = encoded

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        with self._lock:
            return self.normalize_key(key) in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def dump(self) -> dict[str, str]:
        """Return a snapshot of the encoded entries."""
        with self._lock:
            return dict(self._data)

    def update_encoded(self, entries: dict[str, str]) -> None:
        with self._lock:
            for key, raw in entries.items():
                self._data[self.normalize_key(key)] = raw


def repository_cache() -> Cache[Repository]:
    return Cache("repository", Repository.to_dict, Repository.from_dict)


def manifest_cache() -> Cache[Manifest]:
    return Cache("manifest", Manifest.to_dict, Manifest.from_dict)


class CacheStore:
    """SQLite persistence for `Cache` instances.

    Each cache is stored under its name, so one database file holds both
    the repository and the manifest cache.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: Optional[Path] = None) -> None:
        """Initialize the store.

        Args:
            db_path: Path to SQLite database. If None, uses
                ~/.cache/package_validator/cache.db.
        """
        if db_path is None:
            cache_dir = Path.home() / ".cache" / "package_validator"
            cache_dir.mkdir(parents=True, exist_ok=True)
            db_path = cache_dir / "cache.db"

        self.db_path = db_path
        self._init_database()

    @contextlib.contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path)
        try:
            yield conn
        finally:
            conn.close()

    def _init_database(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cache_entries (
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    stored_at TEXT NOT NULL,
                    PRIMARY KEY (namespace, key)
                )
                """
            )
            conn.commit()

    def load(self, cache: Cache[Any]) -> int:
        """Fill `cache` with the persisted entries of its namespace.

        Returns:
            Number of entries loaded.
        """
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT key, value FROM cache_entries WHERE namespace = ?",
                (cache.name,),
            ).fetchall()
        cache.update_encoded(dict(rows))
        logger.debug("Loaded %d %s cache entries from %s", len(rows), cache.name, self.db_path)
        return len(rows)

    def save(self, cache: Cache[Any]) -> int:
        """Persist every entry of `cache`, replacing stored ones.

        Returns:
            Number of entries written.
        """
        stored_at = datetime.now(UTC).isoformat()
        rows = [(cache.name, key, value, stored_at) for key, value in cache.dump().items()]
        with self._connect() as conn:
            conn.executemany(
                """
                REPLACE INTO cache_entries (namespace, key, value, stored_at)
                VALUES (?, ?, ?, ?)
                """,
                rows,
            )
            conn.commit()
        logger.debug("Saved %d %s cache entries to %s", len(rows), cache.name, self.db_path)
        return len(rows)

    def clear(self, namespace: Optional[str] = None) -> None:
        """Delete persisted entries, all of them or one namespace."""
        with self._connect() as conn:
            if namespace is None:
                conn.execute("DELETE FROM cache_entries")
            else:
                conn.execute("DELETE FROM cache_entries WHERE namespace = ?", (namespace,))
            conn.commit()

    def info(self) -> dict:
        """Get store statistics.

        Returns:
            Dictionary with cache information:
                - path: Path to cache database file
                - count: Number of persisted entries
                - namespaces: Entry count per namespace
                - size_bytes: Database file size in bytes
        """
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT namespace, COUNT(*) FROM cache_entries GROUP BY namespace"
            ).fetchall()

        namespaces = dict(rows)
        size_bytes = self.db_path.stat().st_size if self.db_path.exists() else 0
        return {
            "path": str(self.db_path),
            "count": sum(namespaces.values()),
            "namespaces": namespaces,
            "size_bytes": size_bytes,
        }
