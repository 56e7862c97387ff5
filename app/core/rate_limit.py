"""Admission dependency for FastAPI routes.

This module wires the admission gate into the HTTP layer.

Design goals:
- Minimal coupling: routes depend on ``rate_limit(category)`` only; which
  category a route uses is decided by the router, not here.
- Swap-friendly: record stores sit behind ``AbstractRecordStore`` and can be
  replaced (e.g., Redis) without touching the gate.
- Never crash the caller path: outcomes are decisions. Rejections are raised
  as ``RateLimitExceededError`` and rendered as HTTP 429 by the exception
  handlers.

Strategy: fixed-window quota per ``category:address:fingerprint`` with
violation hangover, escalated by a per-address behavioural suspicion score.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated, Awaitable, Callable

from fastapi import Header, Request, Response

from app.adapters.rate_limit.base import BehaviorRecord, QuotaRecord
from app.adapters.rate_limit.in_memory import InMemoryRecordStore
from app.core.config import AdmissionSettings, settings
from app.core.errors import RateLimitExceededError
from app.core.identity import resolve_identity
from app.core.policies import DEFAULT_CATEGORY
from app.services.admission_gate import AdmissionGate, epoch_ms
from app.services.behavior_analyzer import BehaviorAnalyzer
from app.services.quota_counter import QuotaCounter
from app.services.reaper import Reaper

logger = logging.getLogger(__name__)


_gate: AdmissionGate | None = None
_gate_config: tuple[float, int, int, bool] | None = None
_reaper: Reaper | None = None


def build_admission_gate(
    admission: AdmissionSettings,
    *,
    clock: Callable[[], float] = epoch_ms,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AdmissionGate:
    """Construct an admission gate backed by in-memory record stores."""

    return AdmissionGate(
        counter=QuotaCounter(InMemoryRecordStore[QuotaRecord](lock_stripes=admission.lock_stripes)),
        analyzer=BehaviorAnalyzer(InMemoryRecordStore[BehaviorRecord](lock_stripes=admission.lock_stripes)),
        clock=clock,
        sleep=sleep,
        throttle_threshold=admission.throttle_threshold,
        max_throttle_delay_ms=admission.max_throttle_delay_ms,
        include_headers=admission.include_headers,
    )


def build_reaper(gate: AdmissionGate, admission: AdmissionSettings) -> Reaper:
    """Construct the reaper sweeping the stores of ``gate``.

    The reaper is remembered so that a rebuilt gate hands it its new stores.
    """

    global _reaper
    _reaper = Reaper(
        quota_store=gate.counter.store,
        behavior_store=gate.analyzer.store,
        interval_seconds=admission.reaper_interval_seconds,
        idle_ttl_ms=admission.idle_ttl_seconds * 1000,
    )
    return _reaper


def get_admission_gate() -> AdmissionGate:
    """Return the process-wide admission gate.

    The instance is cached in-module to preserve state across requests.
    If configuration changes (primarily in tests), the gate is rebuilt and
    the running reaper, if any, is pointed at the new stores.

    Returns:
        AdmissionGate: Configured gate instance.
    """

    global _gate, _gate_config

    admission = settings.admission
    config = (
        admission.throttle_threshold,
        admission.max_throttle_delay_ms,
        admission.lock_stripes,
        admission.include_headers,
    )

    if _gate is None or _gate_config != config:
        _gate = build_admission_gate(admission)
        _gate_config = config
        if _reaper is not None:
            _reaper.retarget(quota_store=_gate.counter.store, behavior_store=_gate.analyzer.store)

    return _gate


def reset_admission_gate() -> None:
    """Drop the cached gate so the next request starts from empty stores."""

    global _gate, _gate_config
    _gate = None
    _gate_config = None


def rate_limit(category: str = DEFAULT_CATEGORY):
    """Build a FastAPI dependency enforcing admission for ``category``.

    Usage:
        @router.post("/rsvp", dependencies=[Depends(rate_limit("rsvp"))])
        async def submit_rsvp(): ...

    Args:
        category: Policy category assigned by the routing layer. Unknown
            categories use the default policy.

    Returns:
        An async dependency callable.
    """

    async def enforce_rate_limit(
        request: Request,
        response: Response,
        x_device_fingerprint: Annotated[str | None, Header(alias="X-Device-Fingerprint")] = None,
        user_agent: Annotated[str | None, Header(alias="User-Agent")] = None,
    ) -> None:
        """Admit, delay or reject the current request.

        Raises:
            RateLimitExceededError: When the request is blocked.
        """

        if not settings.admission.enabled:
            return

        gate = get_admission_gate()
        if gate.policy_for(category).skip:
            return

        identity = resolve_identity(
            request.client.host if request.client else None,
            fingerprint=x_device_fingerprint,
            user_agent=user_agent,
            path=request.url.path,
        )
        decision = await gate.admit(identity, category)

        if decision.allowed:
            for name, value in decision.headers.items():
                response.headers[name] = value
            return

        raise RateLimitExceededError(
            code="rate_limit_exceeded",
            message=decision.message or "Too many requests. Please try again later.",
            details={"category": category, "retry_after": decision.retry_after or 0},
            retry_after=decision.retry_after or 0,
            violations=decision.violations,
            headers=decision.headers,
        )

    return enforce_rate_limit
