"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before any app import so the settings object
picks them up and no developer .env file leaks into the tests.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

os.environ.setdefault("APP_ADMIN_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_ADMIN_API_KEYS", "test-admin-key-123,test-admin-key-456")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from app.adapters.rate_limit.base import BehaviorRecord, QuotaRecord
from app.adapters.rate_limit.in_memory import InMemoryRecordStore
from app.services.admission_gate import AdmissionGate
from app.services.behavior_analyzer import BehaviorAnalyzer
from app.services.quota_counter import QuotaCounter

START_MS = 1_700_000_000_000.0
BROWSER_UA = "Mozilla/5.0 (X11; Linux x86_64) Firefox/128.0"


class FakeClock:
    """Deterministic epoch-ms clock."""

    def __init__(self, start: float = START_MS) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, ms: float) -> None:
        self.current += ms


class FakeSleep:
    """Records requested sleeps instead of waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def quota_store() -> InMemoryRecordStore[QuotaRecord]:
    return InMemoryRecordStore(lock_stripes=8)


@pytest.fixture
def behavior_store() -> InMemoryRecordStore[BehaviorRecord]:
    return InMemoryRecordStore(lock_stripes=8)


@pytest.fixture
def gate(clock, fake_sleep, quota_store, behavior_store) -> AdmissionGate:
    return AdmissionGate(
        counter=QuotaCounter(quota_store),
        analyzer=BehaviorAnalyzer(behavior_store),
        clock=clock,
        sleep=fake_sleep,
    )
