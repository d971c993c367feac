"""
Test suite for storage backends

Both backends must keep insertion order, filter exactly and roll back
everything written inside a failed atomic block.
"""

import pytest
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from microfinance.schedule import ScheduleStatus
from microfinance.storage import InMemoryStorage, SQLiteStorage, StorageRecord, create_storage


@dataclass
class Sample(StorageRecord):
    amount: Decimal
    due: date
    status: ScheduleStatus
    note: Optional[str] = None


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "test.db")
    yield backend
    backend.close()


class TestStorageRecord:
    """Test record serialization"""

    def test_to_dict_and_back(self):
        now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        record = Sample(id="s-1", created_at=now, updated_at=now, amount=Decimal('10.50'),
                        due=date(2024, 2, 1), status=ScheduleStatus.PARTIAL)

        data = record.to_dict()
        assert data['amount'] == '10.50'
        assert data['due'] == '2024-02-01'
        assert data['status'] == 'PARTIAL'
        assert data['note'] is None

        restored = Sample.from_dict(data)
        assert restored == record


class TestBackends:
    """Behaviour shared by every backend"""

    def test_save_load_update_keeps_order(self, storage):
        storage.save("things", "b", {'id': 'b', 'kind': 'x'})
        storage.save("things", "a", {'id': 'a', 'kind': 'y'})
        storage.save("things", "b", {'id': 'b', 'kind': 'z'})

        assert storage.load("things", "b")['kind'] == 'z'
        assert [row['id'] for row in storage.load_all("things")] == ['b', 'a']
        assert storage.count("things") == 2

    def test_find_with_none_filter(self, storage):
        storage.save("things", "a", {'id': 'a', 'deleted_at': None, 'kind': 'x'})
        storage.save("things", "b", {'id': 'b', 'deleted_at': '2024-01-01', 'kind': 'x'})

        assert [row['id'] for row in storage.find("things", {'deleted_at': None})] == ['a']
        assert len(storage.find("things", {'kind': 'x'})) == 2

    def test_delete_and_exists(self, storage):
        storage.save("things", "a", {'id': 'a'})
        assert storage.exists("things", "a")
        assert storage.delete("things", "a")
        assert not storage.exists("things", "a")
        assert storage.load("things", "missing") is None

    def test_atomic_rollback(self, storage):
        storage.save("things", "a", {'id': 'a', 'value': 1})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("things", "a", {'id': 'a', 'value': 2})
                storage.save("things", "b", {'id': 'b', 'value': 3})
                raise RuntimeError("fail")

        assert storage.load("things", "a")['value'] == 1
        assert storage.load("things", "b") is None

    def test_nested_atomic_commits_with_outer(self, storage):
        with storage.atomic():
            storage.save("things", "a", {'id': 'a'})
            with storage.atomic():
                storage.save("things", "b", {'id': 'b'})

        assert storage.count("things") == 2

    def test_clear_table(self, storage):
        storage.save("things", "a", {'id': 'a'})
        storage.clear_table("things")
        assert storage.load_all("things") == []


class TestCreateStorage:

    def test_memory_url(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_url(self, tmp_path):
        backend = create_storage(f"sqlite:///{tmp_path / 'lending.db'}")
        assert isinstance(backend, SQLiteStorage)
        backend.close()

    def test_unsupported_url(self):
        with pytest.raises(ValueError):
            create_storage("postgresql://localhost/db")
