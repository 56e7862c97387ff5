"""Pydantic schemas for admission responses and operator introspection."""

from pydantic import BaseModel, ConfigDict, Field


class RateLimitRejection(BaseModel):
    """Body returned with HTTP 429 when a request is not admitted."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(
        ...,
        description="Category-specific, human-readable rejection message.",
    )
    retry_after: int = Field(
        ...,
        alias="retryAfter",
        ge=0,
        description="Seconds to wait before retrying.",
    )
    violations: int | None = Field(
        None,
        ge=0,
        description="Current violation count for the caller.",
    )


class RateLimitStatsResponse(BaseModel):
    """Snapshot of the admission record stores."""

    model_config = ConfigDict(populate_by_name=True)

    active_records: int = Field(
        ...,
        alias="activeRecords",
        description="Quota records currently tracked.",
    )
    blocked_addresses: int = Field(
        ...,
        alias="blockedAddresses",
        description="Quota records with an active block.",
    )
    behavior_records: int = Field(
        ...,
        alias="behaviorRecords",
        description="Origin addresses with behaviour history.",
    )
    high_suspicion_count: int = Field(
        ...,
        alias="highSuspicionCount",
        description="Origins whose stored suspicion score is above the throttle threshold.",
    )


class ClearRecordResponse(BaseModel):
    """Result of an operator purge for one address."""

    address: str
    removed: int = Field(..., ge=0, description="Records removed across both stores.")
