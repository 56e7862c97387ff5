"""Background eviction of idle admission records.

The reaper is owned by the application lifespan: ``start()`` schedules an
asyncio task that sweeps both stores on a fixed interval, ``stop()`` cancels
it at shutdown. Sweeps iterate snapshots and never take per-key locks.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Callable

from app.adapters.rate_limit.base import AbstractRecordStore, BehaviorRecord, QuotaRecord
from app.services.admission_gate import epoch_ms

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 5 * 60.0
DEFAULT_IDLE_TTL_MS = 30 * 60 * 1000.0


@dataclass(frozen=True)
class ReapResult:
    quota_evicted: int
    behavior_evicted: int

    @property
    def total(self) -> int:
        return self.quota_evicted + self.behavior_evicted


class Reaper:
    """Periodically evicts quota and behaviour records past the idle TTL."""

    def __init__(
        self,
        *,
        quota_store: AbstractRecordStore[QuotaRecord],
        behavior_store: AbstractRecordStore[BehaviorRecord],
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        idle_ttl_ms: float = DEFAULT_IDLE_TTL_MS,
        clock: Callable[[], float] = epoch_ms,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if idle_ttl_ms <= 0:
            raise ValueError("idle_ttl_ms must be > 0")

        self._quota_store = quota_store
        self._behavior_store = behavior_store
        self._interval_seconds = interval_seconds
        self._idle_ttl_ms = idle_ttl_ms
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    def retarget(
        self,
        *,
        quota_store: AbstractRecordStore[QuotaRecord],
        behavior_store: AbstractRecordStore[BehaviorRecord],
    ) -> None:
        """Sweep a different pair of stores from the next tick on."""

        self._quota_store = quota_store
        self._behavior_store = behavior_store

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self, now: float | None = None) -> ReapResult:
        """Evict records idle for longer than the TTL.

        Args:
            now: Reference time in epoch ms (defaults to the clock).

        Returns:
            Number of evicted records per store.
        """

        now = self._clock() if now is None else now
        ttl = self._idle_ttl_ms

        result = ReapResult(
            quota_evicted=self._quota_store.sweep(
                lambda _key, record: now - record.last_seen > ttl
            ),
            behavior_evicted=self._behavior_store.sweep(
                lambda _key, record: now - record.last_analysis > ttl
            ),
        )

        if result.total:
            logger.info(
                "reaper.sweep",
                extra={
                    "quota_evicted": result.quota_evicted,
                    "behavior_evicted": result.behavior_evicted,
                    "quota_remaining": len(self._quota_store),
                    "behavior_remaining": len(self._behavior_store),
                },
            )
        return result

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            try:
                self.sweep()
            except Exception as exc:
                # Best effort: a failed sweep is retried on the next tick
                logger.error(
                    "reaper.sweep_failed",
                    extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
                )

    def start(self) -> None:
        """Schedule the sweep loop on the running event loop (idempotent)."""

        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="admission-reaper")
        logger.info("reaper.started", extra={"interval_s": self._interval_seconds})

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to finish."""

        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("reaper.stopped")
