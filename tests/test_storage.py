"""
Tests for storage backends, read snapshots and storage URLs
"""

import pytest
from datetime import datetime, timezone

from fx_ledger.storage import (
    InMemoryStorage, SQLiteStorage, StorageError, StorageManager, create_storage
)
from fx_ledger.ledger import Account, AccountType


test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": "100.50",
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "ledger.db")
    yield backend
    backend.close()


class TestStorageBackends:
    """Behaviour shared by every backend"""

    def test_basic_operations(self, storage):
        """Test save, load, load_all, find and count"""
        storage.save("test_table", "test_001", test_data)
        assert storage.load("test_table", "test_001") == test_data
        assert storage.load("test_table", "missing") is None

        storage.save("test_table", "record_2", {"id": "record_2", "name": "Other"})
        assert storage.count("test_table") == 2

        results = storage.find("test_table", {"name": "Test Record"})
        assert len(results) == 1
        assert results[0]["id"] == "test_001"

    def test_load_all_keeps_insertion_order(self, storage):
        """Updating a record does not move it to the end"""
        for i in range(3):
            storage.save("ordered", f"r{i}", {"id": f"r{i}", "value": i})
        storage.save("ordered", "r0", {"id": "r0", "value": 99})

        records = storage.load_all("ordered")
        assert [r["id"] for r in records] == ["r0", "r1", "r2"]
        assert records[0]["value"] == 99

    def test_loaded_data_is_a_copy(self, storage):
        storage.save("copies", "a", {"id": "a", "value": 1})
        loaded = storage.load("copies", "a")
        loaded["value"] = 2
        assert storage.load("copies", "a")["value"] == 1

    def test_read_snapshot_allows_reads(self, storage):
        storage.save("snap", "a", {"id": "a"})
        with storage.read_snapshot():
            assert len(storage.load_all("snap")) == 1
            assert storage.load_all("never_created") == []
        # Tables first touched inside the snapshot still work afterwards
        storage.save("never_created", "b", {"id": "b"})
        assert storage.count("never_created") == 1

    def test_closed_storage_raises(self, storage):
        storage.save("t", "a", {"id": "a"})
        storage.close()
        with pytest.raises(StorageError):
            storage.load_all("t")
        with pytest.raises(StorageError):
            with storage.read_snapshot():
                pass


class TestSQLiteStorage:
    """SQLite specifics"""

    def test_persistence_across_connections(self, tmp_path):
        path = tmp_path / "persist.db"
        first = SQLiteStorage(path)
        first.save("accounts", "a1", {"id": "a1", "code": "1000"})
        first.close()

        second = SQLiteStorage(path)
        assert second.load("accounts", "a1") == {"id": "a1", "code": "1000"}
        second.close()

    def test_atomic_rollback(self, tmp_path):
        storage = SQLiteStorage(tmp_path / "atomic.db")
        storage.save("t", "keep", {"id": "keep"})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("t", "drop", {"id": "drop"})
                raise RuntimeError("boom")

        assert storage.load("t", "drop") is None
        assert storage.load("t", "keep") is not None
        storage.close()

    def test_snapshot_does_not_see_later_commits(self, tmp_path):
        """A second connection's write is invisible inside an open snapshot"""
        path = tmp_path / "wal.db"
        reader = SQLiteStorage(path)
        writer = SQLiteStorage(path)
        writer.save("t", "a", {"id": "a"})

        with reader.read_snapshot():
            assert reader.count("t") == 1
            writer.save("t", "b", {"id": "b"})
            assert reader.count("t") == 1

        assert reader.count("t") == 2
        reader.close()
        writer.close()

    def test_snapshot_reads_take_no_write_lock(self, tmp_path):
        """Tables first touched inside a snapshot are not created and writers proceed"""
        path = tmp_path / "wal.db"
        reader = SQLiteStorage(path)
        writer = SQLiteStorage(path)
        writer.save("t", "a", {"id": "a"})

        with reader.read_snapshot():
            assert reader.load_all("missing") == []
            assert reader.load("missing", "x") is None
            assert reader.count("missing") == 0
            assert reader.load_all("t") == [{"id": "a"}]
            writer.save("t", "b", {"id": "b"})
            writer.save("fresh", "c", {"id": "c"})

        assert reader.count("fresh") == 1
        reader.close()
        writer.close()


class TestStorageManager:
    """Typed record access"""

    def test_record_round_trip(self):
        manager = StorageManager(InMemoryStorage())
        now = datetime.now(timezone.utc)
        account = Account(
            id="ACC1", created_at=now, updated_at=now,
            code="1000", name="Cash", account_type=AccountType.ASSET
        )
        manager.save_record(account, "accounts")

        loaded = manager.load_record(Account, "accounts", "ACC1")
        assert loaded == account
        assert manager.load_all_records(Account, "accounts") == [account]
        assert manager.find_records(Account, "accounts", {"code": "1000"}) == [account]
        assert manager.load_record(Account, "accounts", "nope") is None


class TestCreateStorage:
    def test_memory_url(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_url(self, tmp_path):
        storage = create_storage(f"sqlite:///{tmp_path / 'x.db'}")
        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path == str(tmp_path / 'x.db')
        storage.close()

    def test_sqlite_memory_url(self):
        storage = create_storage("sqlite://")
        assert storage.db_path == ":memory:"
        storage.close()

    def test_unknown_url(self):
        with pytest.raises(ValueError, match="Unsupported database URL"):
            create_storage("postgresql://localhost/db")
