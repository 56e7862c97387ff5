"""Per-key quota counting with fixed windows and violation hangover.

When a window expires the count resets, but the violation count only drops
by one per rollover. Isolated bursts at a window boundary are forgiven over
time, at the cost of allowing up to twice the nominal rate across a boundary.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from typing import Callable

from app.adapters.rate_limit.base import AbstractRecordStore, QuotaRecord
from app.core.policies import RateLimitPolicy
from app.services.penalty import block_duration_ms


class QuotaOutcome(str, enum.Enum):
    ALLOWED = "allowed"
    VIOLATION = "violation"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class QuotaResult:
    """Result of a ``check_and_increment`` call.

    Attributes:
        outcome: Whether the request was counted, tripped the limit, or was
            rejected by an active block.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when rejected).
        reset_at: Epoch ms of the current window end (block end when blocked).
        violation_count: Violations recorded for the key.
        retry_after_ms: Time until the block lifts, for rejected requests.
        suspicion_score: Score used for the decision (None when blocked).
        recovered: True when an expired block was cleared on this request.
    """

    outcome: QuotaOutcome
    limit: int
    remaining: int
    reset_at: float
    violation_count: int
    retry_after_ms: float | None = None
    suspicion_score: float | None = None
    recovered: bool = False

    @property
    def allowed(self) -> bool:
        return self.outcome is QuotaOutcome.ALLOWED

    @property
    def retry_after_seconds(self) -> int | None:
        if self.retry_after_ms is None:
            return None
        return max(0, int(math.ceil(self.retry_after_ms / 1000)))


def _no_suspicion() -> float:
    return 0.0


class QuotaCounter:
    """Counter store operations on top of an ``AbstractRecordStore``."""

    def __init__(self, store: AbstractRecordStore[QuotaRecord]) -> None:
        self._store = store

    @property
    def store(self) -> AbstractRecordStore[QuotaRecord]:
        return self._store

    def get(self, key: str) -> QuotaRecord | None:
        return self._store.get(key)

    def check_and_increment(
        self,
        key: str,
        now: float,
        policy: RateLimitPolicy,
        *,
        address: str = "unknown",
        suspicion: Callable[[], float] = _no_suspicion,
    ) -> QuotaResult:
        """Check the block state, roll the window and count one request.

        Args:
            key: Tracking key (``category:address:fingerprint``).
            now: Current time in epoch ms.
            policy: Category policy.
            address: Normalized origin address stored on new records.
            suspicion: Called once the request is counted; returns the
                current suspicion score feeding the penalty.

        Returns:
            QuotaResult describing the decision.
        """

        with self._store.lock(key):
            record = self._store.get(key)
            if record is None:
                record = QuotaRecord(address=address, count=0, window_start=now, last_seen=now)
                self._store.set(key, record)

            if record.is_blocked(now):
                return QuotaResult(
                    outcome=QuotaOutcome.BLOCKED,
                    limit=policy.max_requests,
                    remaining=0,
                    reset_at=record.blocked_until,
                    violation_count=record.violation_count,
                    retry_after_ms=record.blocked_until - now,
                )

            recovered = record.blocked_until is not None
            record.blocked_until = None

            if now - record.window_start > policy.window_ms:
                record.count = 0
                record.window_start = now
                record.violation_count = max(0, record.violation_count - 1)

            record.count += 1
            record.last_seen = now
            score = suspicion()
            reset_at = record.window_start + policy.window_ms

            if record.count > policy.max_requests:
                record.violation_count += 1
                duration = block_duration_ms(record.violation_count, score, policy)
                record.blocked_until = now + duration
                return QuotaResult(
                    outcome=QuotaOutcome.VIOLATION,
                    limit=policy.max_requests,
                    remaining=0,
                    reset_at=reset_at,
                    violation_count=record.violation_count,
                    retry_after_ms=duration,
                    suspicion_score=score,
                    recovered=recovered,
                )

            return QuotaResult(
                outcome=QuotaOutcome.ALLOWED,
                limit=policy.max_requests,
                remaining=max(0, policy.max_requests - record.count),
                reset_at=reset_at,
                violation_count=record.violation_count,
                suspicion_score=score,
                recovered=recovered,
            )

    def purge_address(self, address: str) -> int:
        """Remove every quota record belonging to ``address``."""
        return self._store.sweep(lambda _key, record: record.address == address)
