"""Shared fixtures: fake clock, in-memory store and lease, mock HTTP clients."""
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from qrydex.clock import to_iso
from qrydex.models import BUSINESSES, BUSINESS_KEY, BusinessRecord, RegistryRecord, RegistryStatus
from qrydex.queue.crawl_queue import CrawlQueue
from qrydex.queue.lease import MemoryKeyLease
from qrydex.rate_limit import RateLimiter
from qrydex.store.memory import MemoryStore

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Wall and monotonic time that only move when told to. sleep() advances both."""

    def __init__(self, start: datetime = NOW):
        self.current = start
        self._monotonic = 1000.0
        self.sleeps = []

    def now(self) -> datetime:
        return self.current

    def monotonic(self) -> float:
        return self._monotonic

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)

    def advance(self, seconds: float) -> None:
        self._monotonic += seconds
        self.current += timedelta(seconds=seconds)


def days_ago(days: float, now: datetime = NOW) -> str:
    return to_iso(now - timedelta(days=days))


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def no_wait_limiter(clock, name="test") -> RateLimiter:
    return RateLimiter(0, name=name, clock=clock)


def active_registry(org_number="923609016", country="NO", name="Nordic Tools AS", website=None) -> RegistryRecord:
    return RegistryRecord(
        org_number=org_number,
        legal_name=name,
        country_code=country,
        status=RegistryStatus.ACTIVE,
        website=website,
        source="test",
    )


def put_business(store, **fields) -> BusinessRecord:
    record = BusinessRecord(**{"org_number": "923609016", "country_code": "NO", "legal_name": "Nordic Tools AS",
                               **fields})
    store.upsert(BUSINESSES, record.to_record(), BUSINESS_KEY)
    return record


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def lease(clock):
    return MemoryKeyLease(clock)


@pytest.fixture
def queue(store, clock):
    return CrawlQueue(store, clock=clock, retry_backoff=60, max_attempts=3)
