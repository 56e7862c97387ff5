"""Behavioural suspicion scoring per origin address.

Every request from an address (whatever its category) updates a bounded
timestamp history and an endpoint histogram, then adds a per-call suspicion
delta built from three signals:

- Burst rate: many requests within the last second.
- Regularity: near-perfectly periodic inter-arrival times (automation).
- Identity: missing or implausibly short user-agent.

The running score decays linearly to zero over five minutes of inactivity
before the new delta is merged, so it can never go negative.
"""

from __future__ import annotations

import logging
import math
from itertools import islice

from app.adapters.rate_limit.base import AbstractRecordStore, BehaviorRecord

logger = logging.getLogger(__name__)

BURST_WINDOW_MS = 1000.0
BURST_HIGH_THRESHOLD = 10
BURST_HIGH_SCORE = 30.0
BURST_LOW_THRESHOLD = 5
BURST_LOW_SCORE = 15.0

REGULARITY_SAMPLE_SIZE = 10
REGULARITY_MIN_SAMPLES = 5
REGULARITY_MAX_STDDEV_MS = 50.0
REGULARITY_MAX_MEAN_MS = 500.0
REGULARITY_SCORE = 25.0

MIN_USER_AGENT_LENGTH = 10
USER_AGENT_SCORE = 10.0

DECAY_WINDOW_MS = 5 * 60 * 1000.0


def decay_factor(elapsed_ms: float) -> float:
    """Linear decay from 1 (no time elapsed) to 0 (five minutes or more)."""
    return max(0.0, 1.0 - max(0.0, elapsed_ms) / DECAY_WINDOW_MS)


def _burst_score(record: BehaviorRecord, now: float) -> float:
    recent = sum(1 for t in record.request_times if now - t < BURST_WINDOW_MS)
    if recent > BURST_HIGH_THRESHOLD:
        return BURST_HIGH_SCORE
    if recent > BURST_LOW_THRESHOLD:
        return BURST_LOW_SCORE
    return 0.0


def _regularity_score(record: BehaviorRecord) -> float:
    times = record.request_times
    if len(times) < REGULARITY_MIN_SAMPLES:
        return 0.0

    sample = list(islice(times, max(0, len(times) - REGULARITY_SAMPLE_SIZE), None))
    intervals = [later - earlier for earlier, later in zip(sample, sample[1:])]
    mean = sum(intervals) / len(intervals)
    variance = sum((interval - mean) ** 2 for interval in intervals) / len(intervals)

    if math.sqrt(variance) < REGULARITY_MAX_STDDEV_MS and mean < REGULARITY_MAX_MEAN_MS:
        return REGULARITY_SCORE
    return 0.0


def _identity_score(user_agent: str | None) -> float:
    if not user_agent or len(user_agent) < MIN_USER_AGENT_LENGTH:
        return USER_AGENT_SCORE
    return 0.0


def compute_suspicion_delta(record: BehaviorRecord, now: float, user_agent: str | None) -> float:
    """Suspicion added by one request, given a history that already includes it."""

    return _burst_score(record, now) + _regularity_score(record) + _identity_score(user_agent)


class BehaviorAnalyzer:
    """Maintains behaviour records and computes suspicion scores."""

    def __init__(self, store: AbstractRecordStore[BehaviorRecord]) -> None:
        self._store = store

    @property
    def store(self) -> AbstractRecordStore[BehaviorRecord]:
        return self._store

    def score(
        self,
        address: str,
        now: float,
        path: str | None = None,
        user_agent: str | None = None,
    ) -> float:
        """Record one request and return the merged suspicion score.

        Args:
            address: Normalized origin address.
            now: Request time in epoch ms.
            path: Request path, counted in the endpoint histogram.
            user_agent: User-Agent header of this request, if any.

        Returns:
            The updated, decayed suspicion score (always >= 0).
        """

        with self._store.lock(address):
            record = self._store.get(address)
            if record is None:
                record = BehaviorRecord(last_analysis=now, user_agent=user_agent)
                self._store.set(address, record)

            record.request_times.append(now)
            endpoint = path or "/"
            record.endpoints[endpoint] = record.endpoints.get(endpoint, 0) + 1
            if user_agent:
                record.user_agent = user_agent

            delta = compute_suspicion_delta(record, now, user_agent)

            decayed = record.suspicion_score * decay_factor(now - record.last_analysis)
            record.suspicion_score = max(0.0, decayed + delta)
            record.last_analysis = now

            if delta:
                logger.debug(
                    "behavior.suspicion_delta",
                    extra={
                        "delta": delta,
                        "suspicion_score": round(record.suspicion_score, 2),
                        "history_size": len(record.request_times),
                    },
                )
            return record.suspicion_score

    def peek(self, address: str, now: float) -> float:
        """Return the decayed score for ``address`` without recording a request."""

        record = self._store.get(address)
        if record is None:
            return 0.0
        return max(0.0, record.suspicion_score * decay_factor(now - record.last_analysis))

    def get(self, address: str) -> BehaviorRecord | None:
        return self._store.get(address)

    def forget(self, address: str) -> bool:
        return self._store.delete(address)
