"""Block-duration calculation for quota violations."""

from __future__ import annotations

import math

from app.core.policies import RateLimitPolicy

BASE_DELAY_MS = 1000.0
SUSPICION_PENALTY_MS = 5000.0


def _exponential_ms(violation_count: int, multiplier: float, ceiling: float) -> float:
    """``BASE_DELAY_MS * multiplier ** violation_count``, saturating at ``ceiling``.

    The comparison is done in log space so long-lived offenders with
    thousands of violations never overflow a float.
    """

    violation_count = max(0, violation_count)
    multiplier = float(multiplier)
    if violation_count * math.log(multiplier) >= math.log(ceiling / BASE_DELAY_MS):
        return ceiling
    return BASE_DELAY_MS * multiplier ** violation_count


def block_duration_ms(
    violation_count: int,
    suspicion_score: float,
    policy: RateLimitPolicy,
) -> float:
    """Compute how long a key stays blocked after a violation.

    Exponential in the violation count, linear in the suspicion score, and
    always clamped to ``[0, policy.max_delay_ms]``.

    Args:
        violation_count: Violations accumulated by the key (including this one).
        suspicion_score: Current behavioural suspicion score of the origin.
        policy: Category policy supplying multiplier and ceiling.

    Returns:
        Block duration in milliseconds.

    Examples:
        >>> from app.core.policies import get_policy
        >>> block_duration_ms(1, 0.0, get_policy("guestbook"))
        2000.0
        >>> block_duration_ms(10_000, 0.0, get_policy("read"))
        10000.0
    """

    ceiling = float(policy.max_delay_ms)
    if ceiling <= 0:
        return 0.0

    duration = _exponential_ms(violation_count, policy.delay_multiplier, ceiling)
    duration += max(0.0, suspicion_score) / 100 * SUSPICION_PENALTY_MS
    return min(max(duration, 0.0), ceiling)
