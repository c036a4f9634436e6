"""Tests for record store backends."""

import sqlite3

import pytest

from lorekeeper.records import MemoryRecordStore, SqliteRecordStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, temp_world_dir):
    if request.param == "memory":
        yield MemoryRecordStore()
    else:
        s = SqliteRecordStore(temp_world_dir / "test.db")
        yield s
        s.close()


class TestRecordStoreContract:
    def test_put_and_get(self, store):
        store.put("entities", {"id": "a", "name": "Aldric"})
        assert store.get("entities", "a") == {"id": "a", "name": "Aldric"}

    def test_get_missing(self, store):
        assert store.get("entities", "nope") is None

    def test_collections_are_separate(self, store):
        store.put("entities", {"id": "a"})
        assert store.get("events", "a") is None

    def test_put_replaces_without_reordering(self, store):
        store.put("entities", {"id": "a", "v": 1})
        store.put("entities", {"id": "b", "v": 1})
        store.put("entities", {"id": "a", "v": 2})
        assert store.list_all("entities") == [{"id": "a", "v": 2}, {"id": "b", "v": 1}]

    def test_delete(self, store):
        store.put("entities", {"id": "a"})
        assert store.delete("entities", "a") is True
        assert store.delete("entities", "a") is False
        assert store.list_all("entities") == []

    def test_returned_records_are_copies(self, store):
        store.put("entities", {"id": "a", "name": "Aldric"})
        store.get("entities", "a")["name"] = "Changed"
        assert store.get("entities", "a")["name"] == "Aldric"


class TestSqliteRecordStore:
    def test_persists_across_connections(self, temp_world_dir):
        db = temp_world_dir / "world.db"
        first = SqliteRecordStore(db)
        first.put("events", {"id": "e1", "title": "Siege"})
        first.close()

        second = SqliteRecordStore(db)
        assert second.get("events", "e1") == {"id": "e1", "title": "Siege"}
        assert second.count("events") == 1
        second.close()

    def _corrupt(self, db):
        conn = sqlite3.connect(str(db))
        conn.execute(
            "INSERT INTO records (collection, id, data) VALUES (?, ?, ?)",
            ("entities", "bad", "{not json"),
        )
        conn.commit()
        conn.close()

    def test_tolerant_mode_skips_malformed_rows(self, temp_world_dir):
        db = temp_world_dir / "world.db"
        store = SqliteRecordStore(db)
        store.put("entities", {"id": "good"})
        store.close()
        self._corrupt(db)

        store = SqliteRecordStore(db)
        assert store.list_all("entities") == [{"id": "good"}]
        store.close()

    def test_strict_mode_raises_on_malformed_rows(self, temp_world_dir):
        db = temp_world_dir / "world.db"
        SqliteRecordStore(db).close()
        self._corrupt(db)

        store = SqliteRecordStore(db, tolerant=False)
        with pytest.raises(ValueError, match="Malformed"):
            store.list_all("entities")
        store.close()
