"""
Shared fixtures for the marketplace test suite.

Every test runs against MemoryRecordStore with a controllable clock, so no
MongoDB or SMS gateway is needed.
"""

import os

# Must be set before config.settings is created
os.environ["STORE_BACKEND"] = "memory"
os.environ["ENVIRONMENT"] = "development"
os.environ["PIN_HASH_ROUNDS"] = "4"
os.environ["OTP_SMS_DELIVERY"] = "false"
os.environ["SUBSCRIPTION_SWEEP_INTERVAL_SECONDS"] = "0"
os.environ["LOG_FILE"] = ""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, List, Tuple

import pytest
import pytest_asyncio

from app.utils.record_store import MemoryRecordStore
from app.utils.security import hash_secret
from app.utils.subscription_service import SubscriptionService

DEFAULT_PIN = "1234"


class FakeClock:
    def __init__(self, start: datetime = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class RecordingPublisher:
    def __init__(self) -> None:
        self.events: List[Any] = []

    async def publish(self, event) -> None:
        self.events.append(event)


class FailingPublisher:
    async def publish(self, event) -> None:
        raise ConnectionError("socket layer down")


class FakeConnection:
    def __init__(self, connection_id: str, fail: bool = False) -> None:
        self.id = connection_id
        self.fail = fail
        self.sent: List[Tuple[str, Any]] = []

    async def send(self, event: str, data: Any) -> None:
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.sent.append((event, data))

    def events(self, name: str) -> List[Any]:
        return [data for event, data in self.sent if event == name]


class YieldingStore(MemoryRecordStore):
    """Hands control back to the event loop before every call.

    Coroutines gathered against it interleave between store calls the way
    they would against a networked database.
    """

    async def find_unique(self, collection, record_id):
        await asyncio.sleep(0)
        return await super().find_unique(collection, record_id)

    async def find_many(self, collection, where=None, order_by=None, skip=0, limit=None):
        await asyncio.sleep(0)
        return await super().find_many(collection, where, order_by, skip, limit)

    async def create(self, collection, data):
        await asyncio.sleep(0)
        return await super().create(collection, data)

    async def update(self, collection, record_id, data=None, *, where=None, inc=None):
        await asyncio.sleep(0)
        return await super().update(collection, record_id, data, where=where, inc=inc)

    async def update_many(self, collection, where, data):
        await asyncio.sleep(0)
        return await super().update_many(collection, where, data)

    async def count(self, collection, where=None):
        await asyncio.sleep(0)
        return await super().count(collection, where)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest.fixture
def yielding_store():
    return YieldingStore()


@pytest.fixture
def publisher():
    return RecordingPublisher()


async def make_provider(store, clock, contact_no="+923001234567", name="Ali Electric", **overrides):
    doc = {
        "name": name,
        "city": "Lahore",
        "skillset": "Electrician and wiring",
        "contact_no": contact_no,
        "description": None,
        "experience": "5 years",
        "pin_hash": hash_secret(DEFAULT_PIN),
        "is_active": True,
        "created_at": clock(),
        "updated_at": clock(),
        **SubscriptionService(store, now=clock).trial_fields(),
    }
    doc.update(overrides)
    return await store.create("providers", doc)


async def make_consumer(store, clock, contact_no="+923211234567", name="Sara Khan", **overrides):
    doc = {
        "name": name,
        "city": "Lahore",
        "contact_no": contact_no,
        "pin_hash": hash_secret(DEFAULT_PIN),
        "created_at": clock(),
        "updated_at": clock(),
    }
    doc.update(overrides)
    return await store.create("consumers", doc)


@pytest_asyncio.fixture
async def provider(store, clock):
    return await make_provider(store, clock)


@pytest_asyncio.fixture
async def consumer(store, clock):
    return await make_consumer(store, clock)
