"""Record store interfaces and admission records.

The admission services depend on this abstraction (not the concrete
implementation) so the in-memory store can later be replaced by a shared
backend (e.g., Redis) without touching the admission gate logic. Keeping the
stores per-process is the main scalability limitation: N instances enforce
N times the configured quota.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, ContextManager, Generic, TypeVar

TIMESTAMP_HISTORY_SIZE = 100

RecordT = TypeVar("RecordT")


@dataclass
class QuotaRecord:
    """Fixed-window quota state for one ``category:address:fingerprint`` key.

    Attributes:
        address: Normalized origin address the key belongs to.
        count: Requests counted in the current window.
        window_start: Epoch ms at which the current window opened.
        last_seen: Epoch ms of the last counted request.
        violation_count: Accumulated violations, decayed by one per rollover.
        blocked_until: Epoch ms until which the key is blocked, if any.
    """

    address: str
    count: int
    window_start: float
    last_seen: float
    violation_count: int = 0
    blocked_until: float | None = None

    def is_blocked(self, now: float) -> bool:
        return self.blocked_until is not None and now < self.blocked_until


@dataclass
class BehaviorRecord:
    """Behavioural history for one origin address, across all categories."""

    last_analysis: float
    request_times: deque[float] = field(
        default_factory=lambda: deque(maxlen=TIMESTAMP_HISTORY_SIZE)
    )
    endpoints: dict[str, int] = field(default_factory=dict)
    user_agent: str | None = None
    suspicion_score: float = 0.0


class AbstractRecordStore(ABC, Generic[RecordT]):
    """Keyed record storage with per-key locking."""

    @abstractmethod
    def get(self, key: str) -> RecordT | None:
        """Return the record stored under ``key`` or None."""
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, record: RecordT) -> None:
        """Store ``record`` under ``key``, replacing any previous value."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove ``key``.

        Returns:
            True if a record was removed.
        """
        raise NotImplementedError

    @abstractmethod
    def sweep(self, predicate: Callable[[str, RecordT], bool]) -> int:
        """Remove every record for which ``predicate(key, record)`` is true.

        Implementations must not hold per-key locks while sweeping.

        Returns:
            Number of removed records.
        """
        raise NotImplementedError

    @abstractmethod
    def snapshot(self) -> list[tuple[str, RecordT]]:
        """Return a point-in-time list of ``(key, record)`` pairs."""
        raise NotImplementedError

    @abstractmethod
    def lock(self, key: str) -> ContextManager[object]:
        """Return the lock guarding read-modify-write sequences on ``key``."""
        raise NotImplementedError

    @abstractmethod
    def __len__(self) -> int:
        raise NotImplementedError
