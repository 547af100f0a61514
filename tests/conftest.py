from __future__ import annotations

import os
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

# Settings are read once at import time, so configure them before any
# test module imports toolroom.
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("TZ", "America/Chicago")
os.environ.setdefault("API_KEY", "test-key")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("PRELOAD_ID_CACHE", "true")

CHICAGO = ZoneInfo("America/Chicago")


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


TOOLS = {
    "tool-1": {"uniqueId": "T1234", "name": "Drill", "brand": "Makita", "model": "XFD131", "status": "available"},
    "tool-2": {"uniqueId": "T2000", "name": "Circular Saw", "brand": "DeWalt", "model": "DCS570", "status": "available"},
    "tool-3": {"uniqueId": "T3000", "name": "Grinder", "brand": "Bosch", "model": "GWS", "status": "available"},
}

STAFF = {
    "staff-1": {"jobCode": "W001", "fullName": "Ava Reyes", "role": "worker", "assignedToolIds": []},
    "staff-2": {"jobCode": "W002", "fullName": "Ben Ortiz", "role": "worker", "assignedToolIds": []},
    "staff-9": {"jobCode": "S001", "fullName": "Cleo Park", "role": "supervisor", "assignedToolIds": []},
}

CONSUMABLES = {
    "cons-1": {"uniqueId": "C0001", "name": "Gloves", "unit": "pairs", "currentQuantity": 3, "minQuantity": 5, "maxQuantity": 50, "unitPrice": 2.5},
    "cons-2": {"uniqueId": "C0002", "name": "Tape", "currentQuantity": 0, "minQuantity": 2, "maxQuantity": 20, "unitPrice": 4},
    "cons-3": {"uniqueId": "C0003", "name": "Zip Ties", "currentQuantity": 120, "minQuantity": 10, "maxQuantity": 100, "unitPrice": 0.1},
    "cons-4": {"uniqueId": "C0004", "name": "Old Blades", "currentQuantity": 0, "isActive": False},
}


def seed(store) -> None:
    for doc_id, data in TOOLS.items():
        store.put("tools", doc_id, data)
    for doc_id, data in STAFF.items():
        store.put("staff", doc_id, data)
    for doc_id, data in CONSUMABLES.items():
        store.put("consumables", doc_id, data)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 10, 20, 9, 30, tzinfo=CHICAGO))


@pytest.fixture()
def memory_store(clock):
    from toolroom.store import MemoryDocumentStore

    store = MemoryDocumentStore(clock=clock)
    seed(store)
    store.reset_counters()
    return store
