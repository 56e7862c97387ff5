from __future__ import annotations

from fastapi import APIRouter, Depends

from app.core.auth import verify_admin_key
from app.core.identity import normalize_address
from app.core.rate_limit import get_admission_gate, rate_limit
from app.schemas.rate_limit import ClearRecordResponse, RateLimitStatsResponse

router = APIRouter(
    prefix="/admin/rate-limit",
    tags=["Admin"],
    dependencies=[Depends(verify_admin_key), Depends(rate_limit("admin"))],
)


@router.get("/stats", response_model=RateLimitStatsResponse, response_model_by_alias=True)
async def get_rate_limit_stats() -> RateLimitStatsResponse:
    """Return counts of tracked, blocked and highly suspicious origins."""

    stats = get_admission_gate().get_stats()
    return RateLimitStatsResponse(
        active_records=stats.active_records,
        blocked_addresses=stats.blocked_addresses,
        behavior_records=stats.behavior_records,
        high_suspicion_count=stats.high_suspicion_count,
    )


@router.delete("/records/{address}", response_model=ClearRecordResponse)
async def clear_rate_limit_record(address: str) -> ClearRecordResponse:
    """Purge all quota and behaviour records for an origin address.

    Operator override: the next request from the address is treated as
    coming from a brand-new origin.
    """

    normalized = normalize_address(address)
    removed = get_admission_gate().clear_record(normalized)
    return ClearRecordResponse(address=normalized, removed=removed)
