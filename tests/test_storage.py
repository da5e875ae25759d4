"""
Tests for storage backends and unit-of-work support
"""

import pytest
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path

from finledger.storage import InMemoryStorage, SQLiteStorage, create_storage


# Test data
test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": "100.50",
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


def exercise_basic_operations(storage):
    # Test save and load
    storage.save("test_table", "record_1", test_data)
    assert storage.load("test_table", "record_1") == test_data

    # Test exists
    assert storage.exists("test_table", "record_1")
    assert not storage.exists("test_table", "non_existent")

    # Test load_all
    storage.save("test_table", "record_2", {"id": "record_2", "data": "test"})
    assert len(storage.load_all("test_table")) == 2

    # Test find
    results = storage.find("test_table", {"id": "test_001"})
    assert len(results) == 1
    assert results[0]["name"] == "Test Record"

    # Test count
    assert storage.count("test_table") == 2

    # Test delete
    assert storage.delete("test_table", "record_1")
    assert not storage.exists("test_table", "record_1")
    assert storage.count("test_table") == 1

    # Test clear_table
    storage.clear_table("test_table")
    assert storage.count("test_table") == 0


class TestInMemoryStorage:
    """Test the in-memory backend"""

    def test_basic_operations(self):
        """Test basic CRUD operations"""
        exercise_basic_operations(InMemoryStorage())

    def test_loaded_records_are_copies(self):
        """Test that mutating a loaded record does not change storage"""
        storage = InMemoryStorage()
        storage.save("t", "1", {"id": "1", "balance": "10.00"})
        loaded = storage.load("t", "1")
        loaded["balance"] = "99.00"
        assert storage.load("t", "1")["balance"] == "10.00"

    def test_atomic_commit(self):
        """Test that writes inside a unit become visible after commit"""
        storage = InMemoryStorage()
        with storage.atomic():
            storage.save("t", "1", {"id": "1"})
            storage.save("t", "2", {"id": "2"})
            assert storage.count("t") == 2
        assert storage.count("t") == 2

    def test_atomic_rollback_discards_everything(self):
        """Test all-or-nothing on exception"""
        storage = InMemoryStorage()
        storage.save("t", "1", {"id": "1", "value": "before"})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("t", "1", {"id": "1", "value": "after"})
                storage.save("t", "2", {"id": "2"})
                storage.delete("t", "1")
                raise RuntimeError("boom")

        assert storage.load("t", "1") == {"id": "1", "value": "before"}
        assert not storage.exists("t", "2")
        assert not storage.in_unit()

    def test_nested_atomic_joins_outer_unit(self):
        """Test that an inner block's writes roll back with the outer unit"""
        storage = InMemoryStorage()

        with pytest.raises(ValueError):
            with storage.atomic():
                with storage.atomic():
                    storage.save("t", "inner", {"id": "inner"})
                assert storage.in_unit()
                raise ValueError("outer failure")

        assert not storage.exists("t", "inner")

    def test_uncommitted_writes_invisible_to_other_threads(self):
        """Test isolation of a unit's pending writes"""
        storage = InMemoryStorage()
        seen = {}
        written = threading.Event()
        checked = threading.Event()

        def reader():
            written.wait()
            seen["exists"] = storage.exists("t", "1")
            checked.set()

        thread = threading.Thread(target=reader)
        thread.start()
        with storage.atomic():
            storage.save("t", "1", {"id": "1"})
            written.set()
            checked.wait(timeout=5)
        thread.join()

        assert seen["exists"] is False
        assert storage.exists("t", "1")


class TestSQLiteStorage:
    """Test the SQLite backend on a temporary database file"""

    def setup_method(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = Path(self.temp_dir.name) / "test.db"
        self.storage = SQLiteStorage(self.db_path)

    def teardown_method(self):
        self.storage.close()
        self.temp_dir.cleanup()

    def test_basic_operations(self):
        """Test basic CRUD operations"""
        exercise_basic_operations(self.storage)

    def test_persistence_across_connections(self):
        """Test that committed data survives reopening the file"""
        self.storage.save("t", "1", {"id": "1", "amount": "12.34"})
        self.storage.close()

        self.storage = SQLiteStorage(self.db_path)
        assert self.storage.load("t", "1") == {"id": "1", "amount": "12.34"}

    def test_atomic_rollback(self):
        """Test all-or-nothing on exception"""
        self.storage.save("t", "1", {"id": "1", "value": "before"})

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("t", "1", {"id": "1", "value": "after"})
                self.storage.save("t", "2", {"id": "2"})
                raise RuntimeError("boom")

        assert self.storage.load("t", "1")["value"] == "before"
        assert not self.storage.exists("t", "2")

    def test_atomic_commit_with_new_table(self):
        """Test that a table first created inside a unit is committed with it"""
        with self.storage.atomic():
            self.storage.save("fresh", "1", {"id": "1"})
        assert self.storage.count("fresh") == 1

    def test_load_all_keeps_insertion_order(self):
        for i in range(5):
            self.storage.save("t", f"r{i}", {"id": f"r{i}"})
        assert [r["id"] for r in self.storage.load_all("t")] == [f"r{i}" for i in range(5)]


class TestCreateStorage:
    """Test backend selection from database URLs"""

    def test_memory_url(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_in_memory_url(self):
        storage = create_storage("sqlite://")
        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path == ":memory:"
        storage.close()

    def test_sqlite_file_url(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = create_storage(f"sqlite:///{temp_dir}/ledger.db")
            assert storage.db_path == f"{temp_dir}/ledger.db"
            storage.close()

    def test_unsupported_url(self):
        """Test that unknown schemes are rejected"""
        with pytest.raises(ValueError, match="Unsupported database URL"):
            create_storage("postgresql://localhost/ledger")
