"""Origin identity resolution.

Derives stable tracking keys from a request's origin address, an optional
client-supplied device fingerprint and the policy category. All functions are
pure and never fail: a missing address lands in the ``"unknown"`` bucket.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

UNKNOWN_ADDRESS = "unknown"
_IPV4_MAPPED_PREFIX = "::ffff:"


@dataclass(frozen=True)
class RequestIdentity:
    """Signals the admission gate consumes from an inbound request."""

    address: str
    fingerprint: str = ""
    user_agent: str | None = None
    path: str = "/"


def normalize_address(raw: str | None) -> str:
    """Normalize an origin address.

    Strips the IPv6-mapped IPv4 prefix (``::ffff:10.0.0.1`` -> ``10.0.0.1``).

    Examples:
        >>> normalize_address("::ffff:192.168.1.7")
        '192.168.1.7'
        >>> normalize_address(None)
        'unknown'
    """

    if not raw:
        return UNKNOWN_ADDRESS
    address = raw.strip()
    if address.lower().startswith(_IPV4_MAPPED_PREFIX):
        address = address[len(_IPV4_MAPPED_PREFIX):]
    return address or UNKNOWN_ADDRESS


def build_tracking_key(category: str, address: str | None, fingerprint: str | None = None) -> str:
    """Build the quota key for a (category, address, fingerprint) triple."""

    return f"{category}:{normalize_address(address)}:{fingerprint or ''}"


def resolve_identity(
    address: str | None,
    *,
    fingerprint: str | None = None,
    user_agent: str | None = None,
    path: str | None = None,
) -> RequestIdentity:
    """Collect request signals into a normalized ``RequestIdentity``."""

    return RequestIdentity(
        address=normalize_address(address),
        fingerprint=(fingerprint or "").strip(),
        user_agent=user_agent,
        path=path or "/",
    )


def hash_identifier(value: str) -> str:
    """Hash an address or tracking key for logging without exposing it."""
    return hashlib.sha256(value.encode()).hexdigest()[:16]
