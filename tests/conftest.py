"""
Shared fixtures: an in-memory document source and a controllable clock.
"""
import copy
from collections import Counter

import pytest

from app.errors import RecordNotFoundError


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDocumentSource:
    """In-memory stand-in for app.database with failure switches."""

    def __init__(self, collections=None):
        self.collections: dict[str, dict[str, dict]] = {}
        for path, records in (collections or {}).items():
            self.collections[path] = {
                r["id"]: {k: v for k, v in r.items() if k != "id"} for r in records
            }
        self.reads = Counter()
        self.writes = Counter()
        self.fail_reads = False
        self.fail_writes = False
        self._next_key = 0

    def _snapshot(self, path):
        return [{**copy.deepcopy(data), "id": key} for key, data in self.collections.get(path, {}).items()]

    async def read(self, path):
        self.reads[path] += 1
        if self.fail_reads:
            raise ConnectionError("source unavailable")
        return self._snapshot(path)

    async def add(self, path, record):
        if self.fail_writes:
            raise ConnectionError("source unavailable")
        self._next_key += 1
        key = f"k{self._next_key}"
        self.collections.setdefault(path, {})[key] = dict(record)
        self.writes[path] += 1
        return key

    async def update(self, path, key, partial):
        if self.fail_writes:
            raise ConnectionError("source unavailable")
        records = self.collections.get(path, {})
        if key not in records:
            raise RecordNotFoundError(path, key)
        records[key] = {**records[key], **partial}
        self.writes[path] += 1
        return {**copy.deepcopy(records[key]), "id": key}

    async def remove(self, path, key):
        if self.fail_writes:
            raise ConnectionError("source unavailable")
        records = self.collections.get(path, {})
        if key not in records:
            raise RecordNotFoundError(path, key)
        del records[key]
        self.writes[path] += 1


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def donors():
    return [
        {"id": "d1", "name": "Alice", "email": "alice@example.org"},
        {"id": "d2", "name": "Bob", "email": "bob@example.org"},
    ]


@pytest.fixture
def finances():
    return [
        {"id": "f1", "date": "2024-03-15", "amount": 100, "type": "income"},
        {"id": "f2", "date": "2024-02-10", "amount": 50, "type": "income"},
        {"id": "f3", "date": "2024-03-20", "amount": 30, "type": "expense"},
    ]


@pytest.fixture
def inventory():
    return [
        {"id": "i1", "name": "Blankets", "quantity": 40, "category": "bedding"},
    ]


@pytest.fixture
def source(donors, finances, inventory):
    return FakeDocumentSource({
        "donors": donors,
        "finances": finances,
        "inventory": inventory,
    })
