"""Adaptive admission gate.

Decides per request whether to admit, throttle (admit after an artificial
delay) or block a caller, combining the category quota with the origin's
behavioural suspicion score.

States per tracking key:
- OPEN: no active block and the count is within the quota.
- THROTTLED: admitted, but the suspicion score is above the threshold so the
  request waits ``min(score * 10, max_throttle_delay_ms)`` first. Evaluated
  fresh on every request, never cached.
- BLOCKED: the quota was exceeded and ``blocked_until`` lies in the future.
- Recovering: an expired block is cleared by the next request, which then
  proceeds as OPEN (reported via ``AdmissionDecision.recovered``).
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Mapping

from app.core.identity import RequestIdentity, build_tracking_key, hash_identifier, normalize_address
from app.core.policies import DEFAULT_POLICIES, RateLimitPolicy, get_policy
from app.services.behavior_analyzer import BehaviorAnalyzer
from app.services.quota_counter import QuotaCounter, QuotaOutcome, QuotaResult

logger = logging.getLogger(__name__)

THROTTLE_DELAY_PER_POINT_MS = 10.0


def epoch_ms() -> float:
    """Default clock: current UNIX time in milliseconds."""
    return time.time() * 1000


class AdmissionState(str, enum.Enum):
    OPEN = "open"
    THROTTLED = "throttled"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of one admission check.

    Attributes:
        state: OPEN, THROTTLED or BLOCKED.
        category: Category the decision was made for.
        headers: Response headers to attach to the caller's response.
        suspicion_score: Score used for the decision (0 for active blocks).
        delay_ms: Artificial delay applied before admitting (0 if none).
        message: Category rejection message, set for blocked requests.
        retry_after: Seconds until retry, set for blocked requests.
        violations: Violation count for the key, set for blocked requests.
        recovered: True when this request cleared an expired block.
    """

    state: AdmissionState
    category: str
    headers: dict[str, str] = field(default_factory=dict)
    suspicion_score: float = 0.0
    delay_ms: float = 0.0
    message: str | None = None
    retry_after: int | None = None
    violations: int | None = None
    recovered: bool = False

    @property
    def allowed(self) -> bool:
        return self.state is not AdmissionState.BLOCKED


@dataclass(frozen=True)
class AdmissionStats:
    active_records: int
    blocked_addresses: int
    behavior_records: int
    high_suspicion_count: int


class AdmissionGate:
    """Orchestrates quota counting, behaviour analysis and penalties."""

    def __init__(
        self,
        *,
        counter: QuotaCounter,
        analyzer: BehaviorAnalyzer,
        policies: Mapping[str, RateLimitPolicy] = DEFAULT_POLICIES,
        clock: Callable[[], float] = epoch_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        throttle_threshold: float = 50.0,
        max_throttle_delay_ms: float = 2000.0,
        include_headers: bool = True,
    ) -> None:
        """Initialize the gate.

        Args:
            counter: Quota counter (Counter Store operations).
            analyzer: Behaviour analyzer producing suspicion scores.
            policies: Category policy table.
            clock: Time source returning epoch milliseconds.
            sleep: Coroutine used for the throttle delay (seconds).
            throttle_threshold: Scores strictly above this are throttled.
            max_throttle_delay_ms: Ceiling for the throttle delay.
            include_headers: Emit X-RateLimit-* headers.

        Raises:
            ValueError: If the thresholds are negative.
        """
        if throttle_threshold < 0:
            raise ValueError("throttle_threshold must be >= 0")
        if max_throttle_delay_ms < 0:
            raise ValueError("max_throttle_delay_ms must be >= 0")

        self._counter = counter
        self._analyzer = analyzer
        self._policies = policies
        self._clock = clock
        self._sleep = sleep
        self._throttle_threshold = throttle_threshold
        self._max_throttle_delay_ms = max_throttle_delay_ms
        self._include_headers = include_headers

    @property
    def counter(self) -> QuotaCounter:
        return self._counter

    @property
    def analyzer(self) -> BehaviorAnalyzer:
        return self._analyzer

    def policy_for(self, category: str) -> RateLimitPolicy:
        return get_policy(category, self._policies)

    def throttle_delay_ms(self, suspicion_score: float) -> float:
        """Artificial delay for a score, 0 when at or below the threshold."""

        if suspicion_score <= self._throttle_threshold:
            return 0.0
        return min(suspicion_score * THROTTLE_DELAY_PER_POINT_MS, self._max_throttle_delay_ms)

    def tracking_key(self, identity: RequestIdentity, category: str, policy: RateLimitPolicy) -> str:
        """Quota key for a request, honouring the policy's ``key_builder``."""

        if policy.key_builder is not None:
            return policy.key_builder(identity, category)
        return build_tracking_key(category, identity.address, identity.fingerprint)

    def evaluate(self, identity: RequestIdentity, category: str, now: float | None = None) -> AdmissionDecision:
        """Make the admission decision for one request without delaying.

        The quota check, increment and suspicion update happen without any
        suspension point, so they are atomic with respect to other requests
        on the same event loop; the record stores add per-key locks for
        threaded callers.
        """

        now = self._clock() if now is None else now
        policy = self.policy_for(category)
        key = self.tracking_key(identity, category, policy)

        result = self._counter.check_and_increment(
            key,
            now,
            policy,
            address=identity.address,
            suspicion=lambda: self._analyzer.score(
                identity.address, now, identity.path, identity.user_agent
            ),
        )

        if result.outcome is QuotaOutcome.BLOCKED:
            return self._blocked_decision(key, category, policy, result)
        if result.outcome is QuotaOutcome.VIOLATION:
            return self._violation_decision(key, category, policy, result)
        return self._admitted_decision(key, category, result)

    async def admit(self, identity: RequestIdentity, category: str) -> AdmissionDecision:
        """Evaluate a request and apply the throttle delay when required.

        The delay suspends only the current request. There is no early exit
        if the caller disconnects while waiting.
        """

        decision = self.evaluate(identity, category)
        if decision.delay_ms > 0:
            await self._sleep(decision.delay_ms / 1000)
        return decision

    def _rate_limit_headers(self, limit: int, remaining: int, reset_at: float) -> dict[str, str]:
        if not self._include_headers:
            return {}
        return {
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Reset": str(int(reset_at)),
        }

    def _admitted_decision(self, key: str, category: str, result: QuotaResult) -> AdmissionDecision:
        score = result.suspicion_score or 0.0
        delay_ms = self.throttle_delay_ms(score)
        state = AdmissionState.THROTTLED if delay_ms > 0 else AdmissionState.OPEN

        if result.recovered:
            logger.info(
                "admission.recovered",
                extra={"key_hash": hash_identifier(key), "category": category},
            )

        log_extra = {
            "key_hash": hash_identifier(key),
            "category": category,
            "limit": result.limit,
            "remaining": result.remaining,
            "suspicion_score": round(score, 2),
        }
        if state is AdmissionState.THROTTLED:
            logger.info("admission.throttled", extra={**log_extra, "delay_ms": delay_ms})
        else:
            logger.debug("admission.open", extra=log_extra)

        return AdmissionDecision(
            state=state,
            category=category,
            headers=self._rate_limit_headers(result.limit, result.remaining, result.reset_at),
            suspicion_score=score,
            delay_ms=delay_ms,
            recovered=result.recovered,
        )

    def _violation_decision(
        self,
        key: str,
        category: str,
        policy: RateLimitPolicy,
        result: QuotaResult,
    ) -> AdmissionDecision:
        retry_after = result.retry_after_seconds or 0
        headers = self._rate_limit_headers(result.limit, result.remaining, result.reset_at)
        headers["Retry-After"] = str(retry_after)

        logger.warning(
            "admission.violation",
            extra={
                "key_hash": hash_identifier(key),
                "category": category,
                "limit": result.limit,
                "violations": result.violation_count,
                "suspicion_score": round(result.suspicion_score or 0.0, 2),
                "block_ms": result.retry_after_ms,
            },
        )

        return AdmissionDecision(
            state=AdmissionState.BLOCKED,
            category=category,
            headers=headers,
            suspicion_score=result.suspicion_score or 0.0,
            message=policy.message,
            retry_after=retry_after,
            violations=result.violation_count,
            recovered=result.recovered,
        )

    def _blocked_decision(
        self,
        key: str,
        category: str,
        policy: RateLimitPolicy,
        result: QuotaResult,
    ) -> AdmissionDecision:
        retry_after = result.retry_after_seconds or 0
        headers = {"Retry-After": str(retry_after)}
        headers.update(self._rate_limit_headers(result.limit, 0, result.reset_at))

        logger.warning(
            "admission.blocked",
            extra={
                "key_hash": hash_identifier(key),
                "category": category,
                "retry_after_s": retry_after,
                "violations": result.violation_count,
            },
        )

        return AdmissionDecision(
            state=AdmissionState.BLOCKED,
            category=category,
            headers=headers,
            message=policy.message,
            retry_after=retry_after,
            violations=result.violation_count,
        )

    def get_stats(self, now: float | None = None) -> AdmissionStats:
        """Summarize the current state of both record stores."""

        now = self._clock() if now is None else now
        quota_records = self._counter.store.snapshot()
        behavior_records = self._analyzer.store.snapshot()

        return AdmissionStats(
            active_records=len(quota_records),
            blocked_addresses=sum(1 for _, record in quota_records if record.is_blocked(now)),
            behavior_records=len(behavior_records),
            high_suspicion_count=sum(
                1
                for _, record in behavior_records
                if record.suspicion_score > self._throttle_threshold
            ),
        )

    def clear_record(self, address: str | None) -> int:
        """Purge every quota and behaviour record for ``address``.

        Returns:
            Number of records removed across both stores.
        """

        normalized = normalize_address(address)
        removed = self._counter.purge_address(normalized)
        if self._analyzer.forget(normalized):
            removed += 1

        logger.info(
            "admission.record_cleared",
            extra={"address_hash": hash_identifier(normalized), "removed": removed},
        )
        return removed
