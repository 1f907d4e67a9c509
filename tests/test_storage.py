"""
Tests for storage backends and transaction support
"""

import pytest
import tempfile
import os
from datetime import datetime, timezone

from quickpe.storage import InMemoryStorage, SQLiteStorage, create_storage


# Test data
test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": "100.50",
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(":memory:")
    yield backend
    backend.close()


class TestStorageInterface:
    """Test basic CRUD behaviour shared by all backends"""

    def test_basic_operations(self, storage):
        storage.save("test_table", "record_1", test_data)
        loaded = storage.load("test_table", "record_1")
        assert loaded == test_data

        assert storage.exists("test_table", "record_1")
        assert not storage.exists("test_table", "non_existent")

        storage.save("test_table", "record_2", {"id": "record_2", "data": "test"})
        assert len(storage.load_all("test_table")) == 2

        results = storage.find("test_table", {"id": "test_001"})
        assert len(results) == 1
        assert results[0]["name"] == "Test Record"

        assert storage.count("test_table") == 2

        assert storage.delete("test_table", "record_1")
        assert not storage.delete("test_table", "record_1")
        assert storage.count("test_table") == 1

        storage.clear_table("test_table")
        assert storage.count("test_table") == 0

    def test_loaded_records_are_copies(self, storage):
        storage.save("t", "r1", {"id": "r1", "tags": ["a"]})
        loaded = storage.load("t", "r1")
        loaded["tags"].append("b")
        assert storage.load("t", "r1")["tags"] == ["a"]

    def test_find_matches_all_filters(self, storage):
        storage.save("t", "1", {"id": "1", "user_id": "u1", "read": False})
        storage.save("t", "2", {"id": "2", "user_id": "u1", "read": True})
        storage.save("t", "3", {"id": "3", "user_id": "u2", "read": False})

        results = storage.find("t", {"user_id": "u1", "read": False})
        assert [r["id"] for r in results] == ["1"]


class TestTransactions:
    """Atomic blocks must commit or restore every record"""

    def test_commit(self, storage):
        with storage.atomic():
            storage.save("t", "1", {"id": "1", "value": 1})
            storage.save("t", "2", {"id": "2", "value": 2})
        assert storage.count("t") == 2
        assert not storage.in_transaction

    def test_rollback_restores_previous_state(self, storage):
        storage.save("t", "1", {"id": "1", "value": 1})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("t", "1", {"id": "1", "value": 99})
                storage.save("t", "2", {"id": "2", "value": 2})
                raise RuntimeError("boom")

        assert storage.load("t", "1")["value"] == 1
        assert storage.load("t", "2") is None
        assert not storage.in_transaction

    def test_nested_blocks_join_outer_transaction(self, storage):
        with pytest.raises(ValueError):
            with storage.atomic():
                storage.save("t", "outer", {"id": "outer"})
                with storage.atomic():
                    storage.save("t", "inner", {"id": "inner"})
                raise ValueError("fail after inner commit")

        assert storage.count("t") == 0

    def test_inner_failure_marks_outer_rollback_only(self, storage):
        with storage.atomic():
            storage.save("t", "outer", {"id": "outer"})
            try:
                with storage.atomic():
                    storage.save("t", "inner", {"id": "inner"})
                    raise ValueError("inner failure")
            except ValueError:
                pass

        assert storage.count("t") == 0

    def test_commit_without_transaction_is_noop(self, storage):
        storage.commit()
        storage.rollback()
        assert not storage.in_transaction


class TestSQLitePersistence:

    def test_data_survives_reopen(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "wallet.db")
            storage = SQLiteStorage(path)
            with storage.atomic():
                storage.save("users", "u1", {"id": "u1", "balance": "10.00"})
            storage.close()

            reopened = SQLiteStorage(path)
            assert reopened.load("users", "u1") == {"id": "u1", "balance": "10.00"}
            reopened.close()

    def test_table_created_in_rolled_back_transaction(self):
        storage = SQLiteStorage(":memory:")
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("fresh", "1", {"id": "1"})
                raise RuntimeError("boom")

        # Table is recreated on demand after the rollback dropped it
        assert storage.count("fresh") == 0
        storage.save("fresh", "1", {"id": "1"})
        assert storage.count("fresh") == 1
        storage.close()


class TestCreateStorage:

    def test_memory_url(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_memory_url(self):
        storage = create_storage("sqlite:///:memory:")
        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path == ":memory:"
        storage.close()

    def test_unsupported_url(self):
        with pytest.raises(ValueError):
            create_storage("postgresql://localhost/wallet")
