"""Per-category admission policies.

Each category (e.g. ``rsvp``, ``guestbook``) carries its own quota and penalty
configuration. Sensitive write operations get tighter windows and lower
counts. The table is static configuration: routes pick a category, this module
never decides which one applies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Mapping

from app.core.identity import RequestIdentity

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "default"


@dataclass(frozen=True)
class RateLimitPolicy:
    """Quota and penalty configuration for one category.

    Attributes:
        max_requests: Requests allowed per window.
        window_ms: Window length in milliseconds.
        delay_multiplier: Base of the exponential block-duration growth.
        max_delay_ms: Hard ceiling for any block duration.
        message: Human-readable rejection message for this category.
        skip: Bypass admission entirely for this category.
        key_builder: Optional ``(identity, category) -> key`` replacing the
            default ``category:address:fingerprint`` tracking key.
    """

    max_requests: int
    window_ms: int
    delay_multiplier: float = 1.5
    max_delay_ms: int = 30_000
    message: str = "Too many requests. Please try again later."
    skip: bool = False
    key_builder: Callable[[RequestIdentity, str], str] | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if self.window_ms < 1:
            raise ValueError("window_ms must be >= 1")
        if self.delay_multiplier < 1:
            raise ValueError("delay_multiplier must be >= 1")
        if self.max_delay_ms < 0:
            raise ValueError("max_delay_ms must be >= 0")


DEFAULT_POLICIES: Mapping[str, RateLimitPolicy] = MappingProxyType(
    {
        DEFAULT_CATEGORY: RateLimitPolicy(
            max_requests=100,
            window_ms=60_000,
            delay_multiplier=1.5,
            max_delay_ms=30_000,
            message="Too many requests. Please try again later.",
        ),
        "rsvp": RateLimitPolicy(
            max_requests=10,
            window_ms=60_000,
            delay_multiplier=2,
            max_delay_ms=60_000,
            message="Too many RSVP attempts. Please wait before trying again.",
        ),
        "guestbook": RateLimitPolicy(
            max_requests=5,
            window_ms=60_000,
            delay_multiplier=2,
            max_delay_ms=120_000,
            message="Please wait before adding another message.",
        ),
        "auth": RateLimitPolicy(
            max_requests=5,
            window_ms=15 * 60_000,
            delay_multiplier=3,
            max_delay_ms=300_000,
            message="Too many authentication attempts. Please try again later.",
        ),
        "admin": RateLimitPolicy(
            max_requests=30,
            window_ms=60_000,
            delay_multiplier=1.5,
            max_delay_ms=60_000,
            message="Admin rate limit exceeded.",
        ),
        "read": RateLimitPolicy(
            max_requests=200,
            window_ms=60_000,
            delay_multiplier=1.2,
            max_delay_ms=10_000,
            message="Too many requests. Please slow down.",
        ),
        "guestCodes": RateLimitPolicy(
            max_requests=3,
            window_ms=60_000,
            delay_multiplier=3,
            max_delay_ms=180_000,
            message="Please wait before generating more guest codes.",
        ),
    }
)


def get_policy(
    category: str,
    policies: Mapping[str, RateLimitPolicy] = DEFAULT_POLICIES,
) -> RateLimitPolicy:
    """Return the policy for ``category``, falling back to ``default``.

    Args:
        category: Category name assigned by the routing layer.
        policies: Policy table to look up (defaults to the built-in table).

    Returns:
        The matching policy, or the default one for unknown categories.
    """

    policy = policies.get(category)
    if policy is not None:
        return policy

    logger.debug(
        "policy.fallback",
        extra={"category": category, "fallback": DEFAULT_CATEGORY},
    )
    return policies[DEFAULT_CATEGORY]
