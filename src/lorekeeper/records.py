"""Key-based record storage backends.

The world core only needs get/put/delete/list per collection. Cascades are
orchestrated by the engine, so backends make no multi-record promises.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Protocol

from .constants import SCHEMA_VERSION

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    """Persistence boundary: one keyed record space per collection."""

    def get(self, collection: str, record_id: str) -> dict | None: ...

    def put(self, collection: str, record: dict) -> dict: ...

    def delete(self, collection: str, record_id: str) -> bool: ...

    def list_all(self, collection: str) -> list[dict]: ...


class MemoryRecordStore:
    """Dict-backed record store. Insertion order is preserved."""

    def __init__(self):
        self._data: dict[str, dict[str, dict]] = {}

    def get(self, collection: str, record_id: str) -> dict | None:
        record = self._data.get(collection, {}).get(record_id)
        return dict(record) if record is not None else None

    def put(self, collection: str, record: dict) -> dict:
        self._data.setdefault(collection, {})[record["id"]] = dict(record)
        return record

    def delete(self, collection: str, record_id: str) -> bool:
        return self._data.get(collection, {}).pop(record_id, None) is not None

    def list_all(self, collection: str) -> list[dict]:
        return [dict(r) for r in self._data.get(collection, {}).values()]

    def close(self) -> None:
        pass


class SqliteRecordStore:
    """Record store backed by a single SQLite table.

    Rows are keyed by (collection, id). ``seq`` keeps first-insertion order
    so listings are stable across updates.
    """

    def __init__(self, db_path: Path, tolerant: bool = True):
        """Initialize record store.

        Args:
            db_path: Path to lorekeeper.db
            tolerant: If True, skip malformed rows with warnings when listing.
                      If False, raise on the first malformed row.
        """
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.tolerant = tolerant
        self._conn: sqlite3.Connection | None = None
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), timeout=30.0)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=30000")
        return self._conn

    def _init_db(self):
        """Initialize database schema."""
        conn = self._get_conn()

        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                created_at TEXT DEFAULT (datetime('now'))
            )
        """)

        version = conn.execute("SELECT version FROM schema_version").fetchone()
        if version is None:
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        elif version[0] != SCHEMA_VERSION:
            logger.warning(f"Schema version {version[0]} detected, expected {SCHEMA_VERSION}")

        conn.executescript("""
            CREATE TABLE IF NOT EXISTS records (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                collection TEXT NOT NULL,
                id TEXT NOT NULL,
                data TEXT NOT NULL,
                updated_at TEXT DEFAULT (datetime('now')),
                UNIQUE (collection, id)
            );

            CREATE INDEX IF NOT EXISTS idx_records_collection ON records(collection);
        """)
        conn.commit()

    def get(self, collection: str, record_id: str) -> dict | None:
        row = self._get_conn().execute(
            "SELECT data FROM records WHERE collection = ? AND id = ?",
            (collection, record_id),
        ).fetchone()
        if row is None:
            return None
        return json.loads(row["data"])

    def put(self, collection: str, record: dict) -> dict:
        conn = self._get_conn()
        # Upsert keeps the original seq, so updates do not reorder listings
        conn.execute(
            """
            INSERT INTO records (collection, id, data) VALUES (?, ?, ?)
            ON CONFLICT (collection, id)
            DO UPDATE SET data = excluded.data, updated_at = datetime('now')
            """,
            (collection, record["id"], json.dumps(record)),
        )
        conn.commit()
        return record

    def delete(self, collection: str, record_id: str) -> bool:
        conn = self._get_conn()
        cursor = conn.execute(
            "DELETE FROM records WHERE collection = ? AND id = ?",
            (collection, record_id),
        )
        conn.commit()
        return cursor.rowcount > 0

    def list_all(self, collection: str) -> list[dict]:
        cursor = self._get_conn().execute(
            "SELECT id, data FROM records WHERE collection = ? ORDER BY seq",
            (collection,),
        )

        records = []
        skipped = 0
        for row in cursor:
            try:
                records.append(json.loads(row["data"]))
            except (json.JSONDecodeError, TypeError) as e:
                if not self.tolerant:
                    raise ValueError(f"Malformed {collection} record {row['id']}: {e}") from e
                skipped += 1
                logger.warning(f"Skipping malformed {collection} record {row['id']}: {e}")

        if skipped:
            logger.warning(f"Loaded {len(records)} {collection} records, skipped {skipped}")
        return records

    def count(self, collection: str) -> int:
        cursor = self._get_conn().execute(
            "SELECT COUNT(*) FROM records WHERE collection = ?", (collection,)
        )
        return cursor.fetchone()[0]

    def close(self):
        """Close database connection.

        Forces a WAL checkpoint before closing to ensure all changes
        are written to the main database file.
        """
        if self._conn is not None:
            self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            self._conn.close()
            self._conn = None
