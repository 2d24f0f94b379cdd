"""Durable local storage for collection caches.

Each collection is stored under its own key as a JSON array holding the full
current cache contents. Storage is best-effort: failures are logged and never
raised to the cache.
"""

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SCHEMA = """
-- One row per collection, value is the serialized document array
CREATE TABLE IF NOT EXISTS collections (
    key TEXT PRIMARY KEY,
    documents TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class StorageBackend(ABC):
    """Abstract key -> document-array store."""

    @abstractmethod
    def set(self, key: str, documents: list[dict[str, Any]]) -> None:
        """Replace the stored documents for ``key``."""
        pass

    @abstractmethod
    def get(self, key: str) -> list[Any] | None:
        """Return the stored documents for ``key``, or None if absent or unreadable."""
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        pass

    def keys(self) -> list[str]:
        return []

    def close(self) -> None:
        pass


def _decode(key: str, raw: str) -> list[Any] | None:
    try:
        documents = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Stored data for '{key}' is not valid JSON: {e}")
        return None

    if not isinstance(documents, list):
        logger.warning(
            f"Stored data for '{key}' is {type(documents).__name__}, expected list"
        )
        return None
    return documents


class SQLiteStorage(StorageBackend):
    """SQLite-backed storage, one row per collection."""

    def __init__(self, db_path: str | Path):
        """Initialize the storage.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA)
        self._conn.commit()

        logger.info(f"SQLiteStorage connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.info("SQLiteStorage connection closed")

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure database connection exists."""
        if self._conn is None:
            self.connect()
        return self._conn

    def set(self, key: str, documents: list[dict[str, Any]]) -> None:
        try:
            payload = json.dumps(documents)
        except (TypeError, ValueError) as e:
            logger.warning(f"Cannot serialize documents for '{key}': {e}")
            return

        try:
            conn = self._ensure_connected()
            conn.execute(
                """
                INSERT INTO collections (key, documents, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    documents = excluded.documents,
                    updated_at = excluded.updated_at
                """,
                (key, payload, datetime.now().isoformat()),
            )
            conn.commit()
        except sqlite3.Error as e:
            logger.warning(f"Failed to persist '{key}': {e}")
            return

        logger.debug(f"Persisted {len(documents)} documents for '{key}'")

    def get(self, key: str) -> list[Any] | None:
        try:
            conn = self._ensure_connected()
            row = conn.execute(
                "SELECT documents FROM collections WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            logger.warning(f"Failed to read '{key}': {e}")
            return None

        if row is None:
            logger.debug(f"No stored data found for '{key}'")
            return None
        return _decode(key, row["documents"])

    def remove(self, key: str) -> None:
        try:
            conn = self._ensure_connected()
            conn.execute("DELETE FROM collections WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as e:
            logger.warning(f"Failed to remove '{key}': {e}")

    def keys(self) -> list[str]:
        try:
            conn = self._ensure_connected()
            cursor = conn.execute("SELECT key FROM collections ORDER BY key")
        except sqlite3.Error as e:
            logger.warning(f"Failed to list stored collections: {e}")
            return []
        return [row["key"] for row in cursor]

    def get_stats(self) -> dict[str, Any]:
        """Get storage statistics.

        Returns:
            Dictionary with document counts per collection and file size.
        """
        stats: dict[str, Any] = {"collections": {}}
        for key in self.keys():
            documents = self.get(key) or []
            stats["collections"][key] = len(documents)

        if self.db_path.exists():
            stats["db_size_mb"] = round(
                self.db_path.stat().st_size / (1024 * 1024), 2
            )
        return stats


class MemoryStorage(StorageBackend):
    """Process-local storage. Values are kept serialized, like on disk."""

    def __init__(self):
        self._data: dict[str, str] = {}
        self.writes = 0

    def set(self, key: str, documents: list[dict[str, Any]]) -> None:
        try:
            self._data[key] = json.dumps(documents)
        except (TypeError, ValueError) as e:
            logger.warning(f"Cannot serialize documents for '{key}': {e}")
            return
        self.writes += 1

    def get(self, key: str) -> list[Any] | None:
        raw = self._data.get(key)
        if raw is None:
            return None
        return _decode(key, raw)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class NullStorage(StorageBackend):
    """Storage for hosts without durable storage: every call is a no-op."""

    def set(self, key: str, documents: list[dict[str, Any]]) -> None:
        pass

    def get(self, key: str) -> list[Any] | None:
        return None

    def remove(self, key: str) -> None:
        pass
