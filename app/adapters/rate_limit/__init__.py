"""Admission record storage adapters.

This package provides a small abstraction layer so the gate can start with an
in-memory store and later migrate to Redis or another shared store without
changing the admission services.
"""

from app.adapters.rate_limit.base import AbstractRecordStore, BehaviorRecord, QuotaRecord
from app.adapters.rate_limit.in_memory import InMemoryRecordStore

__all__ = ["AbstractRecordStore", "BehaviorRecord", "InMemoryRecordStore", "QuotaRecord"]
