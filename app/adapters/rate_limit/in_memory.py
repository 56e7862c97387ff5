"""In-memory record store with lock striping.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: a short structural lock guards the dict itself, and a fixed set
  of striped locks serializes read-modify-write sequences per key.
"""

from __future__ import annotations

import threading
import zlib
from typing import Callable, ContextManager

from app.adapters.rate_limit.base import AbstractRecordStore, RecordT


class InMemoryRecordStore(AbstractRecordStore[RecordT]):
    """Dict-backed record store.

    Important:
        This store is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker keeps its own
        independent records.
    """

    def __init__(self, *, lock_stripes: int = 64) -> None:
        """Initialize the store.

        Args:
            lock_stripes: Number of locks shared among keys.

        Raises:
            ValueError: If lock_stripes is invalid.
        """
        if lock_stripes < 1:
            raise ValueError("lock_stripes must be >= 1")

        self._records: dict[str, RecordT] = {}
        self._map_lock = threading.RLock()
        self._stripes = [threading.RLock() for _ in range(lock_stripes)]

    def _stripe_for(self, key: str) -> threading.RLock:
        # crc32 keeps the key -> stripe mapping stable across processes
        return self._stripes[zlib.crc32(key.encode()) % len(self._stripes)]

    def lock(self, key: str) -> ContextManager[object]:
        return self._stripe_for(key)

    def get(self, key: str) -> RecordT | None:
        with self._map_lock:
            return self._records.get(key)

    def set(self, key: str, record: RecordT) -> None:
        with self._map_lock:
            self._records[key] = record

    def delete(self, key: str) -> bool:
        with self._map_lock:
            return self._records.pop(key, None) is not None

    def snapshot(self) -> list[tuple[str, RecordT]]:
        with self._map_lock:
            return list(self._records.items())

    def sweep(self, predicate: Callable[[str, RecordT], bool]) -> int:
        removed = 0
        for key, record in self.snapshot():
            if not predicate(key, record):
                continue
            with self._map_lock:
                # Skip keys replaced by a fresh record since the snapshot
                if self._records.get(key) is record:
                    del self._records[key]
                    removed += 1
        return removed

    def clear(self) -> None:
        with self._map_lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._map_lock:
            return len(self._records)

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"InMemoryRecordStore(size={len(self)}, stripes={len(self._stripes)})"
