"""Tests for idle-record eviction."""

import asyncio

import pytest

from app.adapters.rate_limit.base import BehaviorRecord, QuotaRecord
from app.adapters.rate_limit.in_memory import InMemoryRecordStore
from app.services.reaper import Reaper

MINUTE_MS = 60_000.0


def _quota(last_seen: float, address: str = "10.0.0.1") -> QuotaRecord:
    return QuotaRecord(address=address, count=1, window_start=last_seen, last_seen=last_seen)


def _behavior(last_analysis: float) -> BehaviorRecord:
    return BehaviorRecord(last_analysis=last_analysis)


@pytest.fixture
def reaper(quota_store, behavior_store, clock) -> Reaper:
    return Reaper(quota_store=quota_store, behavior_store=behavior_store, clock=clock)


def test_sweep_evicts_only_idle_records(reaper, quota_store, behavior_store, clock) -> None:
    now = clock()
    quota_store.set("guestbook:10.0.0.1:", _quota(now - 31 * MINUTE_MS))
    quota_store.set("guestbook:10.0.0.2:", _quota(now - 29 * MINUTE_MS, "10.0.0.2"))
    behavior_store.set("10.0.0.1", _behavior(now - 31 * MINUTE_MS))
    behavior_store.set("10.0.0.2", _behavior(now - 29 * MINUTE_MS))

    result = reaper.sweep()

    assert result.quota_evicted == 1
    assert result.behavior_evicted == 1
    assert result.total == 2
    assert quota_store.get("guestbook:10.0.0.1:") is None
    assert quota_store.get("guestbook:10.0.0.2:") is not None
    assert behavior_store.get("10.0.0.1") is None
    assert behavior_store.get("10.0.0.2") is not None


def test_exact_ttl_is_not_evicted(reaper, quota_store, clock) -> None:
    quota_store.set("k", _quota(clock() - 30 * MINUTE_MS))

    assert reaper.sweep().total == 0


def test_sweep_on_empty_stores(reaper) -> None:
    assert reaper.sweep().total == 0


@pytest.mark.parametrize(
    "kwargs",
    [{"interval_seconds": 0}, {"idle_ttl_ms": -1}],
)
def test_invalid_arguments(quota_store, behavior_store, kwargs: dict) -> None:
    with pytest.raises(ValueError):
        Reaper(quota_store=quota_store, behavior_store=behavior_store, **kwargs)


async def _wait_until(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_background_loop_sweeps_and_stops(quota_store, behavior_store, clock) -> None:
    reaper = Reaper(
        quota_store=quota_store,
        behavior_store=behavior_store,
        interval_seconds=0.01,
        clock=clock,
    )
    quota_store.set("k", _quota(clock()))
    behavior_store.set("10.0.0.1", _behavior(clock()))
    clock.advance(31 * MINUTE_MS)

    reaper.start()
    reaper.start()
    assert reaper.running is True

    await _wait_until(lambda: len(quota_store) == 0 and len(behavior_store) == 0)
    await reaper.stop()

    assert len(quota_store) == 0
    assert len(behavior_store) == 0
    assert reaper.running is False


@pytest.mark.asyncio
async def test_stop_without_start_is_noop(reaper) -> None:
    await reaper.stop()

    assert reaper.running is False


class _FlakyStore(InMemoryRecordStore):
    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    def sweep(self, predicate) -> int:
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("store unavailable")
        return super().sweep(predicate)


@pytest.mark.asyncio
async def test_failed_sweep_does_not_stop_loop(behavior_store, clock) -> None:
    flaky = _FlakyStore()
    reaper = Reaper(
        quota_store=flaky,
        behavior_store=behavior_store,
        interval_seconds=0.01,
        clock=clock,
    )

    reaper.start()
    await _wait_until(lambda: flaky.calls >= 2)
    assert reaper.running is True
    await reaper.stop()

    assert flaky.calls >= 2


def test_retarget_sweeps_the_new_stores(reaper, quota_store, clock) -> None:
    replacement_quota = InMemoryRecordStore()
    replacement_behavior = InMemoryRecordStore()
    stale = clock() - 31 * MINUTE_MS
    quota_store.set("guestbook:10.0.0.1:", _quota(stale))
    replacement_quota.set("guestbook:10.0.0.2:", _quota(stale, "10.0.0.2"))
    replacement_behavior.set("10.0.0.2", _behavior(stale))

    reaper.retarget(quota_store=replacement_quota, behavior_store=replacement_behavior)
    result = reaper.sweep()

    assert result.quota_evicted == 1
    assert result.behavior_evicted == 1
    assert len(replacement_quota) == 0
    # the previous store is no longer swept
    assert quota_store.get("guestbook:10.0.0.1:") is not None
