"""Tests for storage backends."""

import pytest

from docmirror.persistence import MemoryStorage, NullStorage, SQLiteStorage


@pytest.fixture
def sqlite_storage():
    """Create an in-memory SQLiteStorage for testing."""
    storage = SQLiteStorage(":memory:")
    storage.connect()
    yield storage
    storage.close()


class TestSQLiteStorage:
    """Tests for the SQLite backend."""

    def test_connect_creates_table(self, sqlite_storage):
        tables = sqlite_storage._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()

        assert "collections" in [t[0] for t in tables]

    def test_set_and_get(self, sqlite_storage):
        docs = [{"id": "1", "name": "x"}, {"id": "2", "tags": ["a", "b"]}]

        sqlite_storage.set("User", docs)

        assert sqlite_storage.get("User") == docs

    def test_set_overwrites(self, sqlite_storage):
        sqlite_storage.set("User", [{"id": "1"}])
        sqlite_storage.set("User", [{"id": "2"}])

        assert sqlite_storage.get("User") == [{"id": "2"}]
        assert sqlite_storage.keys() == ["User"]

    def test_get_missing_key(self, sqlite_storage):
        assert sqlite_storage.get("Nope") is None

    def test_remove(self, sqlite_storage):
        sqlite_storage.set("User", [{"id": "1"}])

        sqlite_storage.remove("User")

        assert sqlite_storage.get("User") is None

    def test_unserializable_documents_are_not_written(self, sqlite_storage):
        sqlite_storage.set("User", [{"id": "1"}])

        sqlite_storage.set("User", [{"id": "2", "bad": object()}])

        assert sqlite_storage.get("User") == [{"id": "1"}]

    def test_corrupt_row_reads_as_missing(self, sqlite_storage):
        sqlite_storage._conn.execute(
            "INSERT INTO collections (key, documents, updated_at) VALUES (?, ?, ?)",
            ("User", "{not json", "now"),
        )

        assert sqlite_storage.get("User") is None

    def test_non_list_row_reads_as_missing(self, sqlite_storage):
        sqlite_storage._conn.execute(
            "INSERT INTO collections (key, documents, updated_at) VALUES (?, ?, ?)",
            ("User", '{"id": "1"}', "now"),
        )

        assert sqlite_storage.get("User") is None

    def test_connects_lazily(self, tmp_path):
        storage = SQLiteStorage(tmp_path / "nested" / "cache.db")

        storage.set("User", [{"id": "1"}])

        assert (tmp_path / "nested" / "cache.db").exists()
        storage.close()

    def test_survives_reopen(self, tmp_path):
        path = tmp_path / "cache.db"
        storage = SQLiteStorage(path)
        storage.set("User", [{"id": "1"}])
        storage.close()

        reopened = SQLiteStorage(path)

        assert reopened.get("User") == [{"id": "1"}]
        reopened.close()

    def test_get_stats(self, tmp_path):
        storage = SQLiteStorage(tmp_path / "cache.db")
        storage.set("User", [{"id": "1"}, {"id": "2"}])
        storage.set("Account", [])

        stats = storage.get_stats()

        assert stats["collections"] == {"Account": 0, "User": 2}
        assert "db_size_mb" in stats
        storage.close()


class TestMemoryStorage:
    def test_round_trip_is_serialized(self):
        storage = MemoryStorage()
        docs = [{"id": "1"}]

        storage.set("User", docs)
        docs[0]["id"] = "changed"

        assert storage.get("User") == [{"id": "1"}]
        assert storage.writes == 1

    def test_remove_and_keys(self):
        storage = MemoryStorage()
        storage.set("b", [])
        storage.set("a", [])

        storage.remove("b")

        assert storage.keys() == ["a"]


class TestNullStorage:
    def test_stores_nothing(self):
        storage = NullStorage()

        storage.set("User", [{"id": "1"}])

        assert storage.get("User") is None
        assert storage.keys() == []
