"""Pydantic models for API responses."""

from pydantic import BaseModel, Field

# =============================================================================
# Sync Models
# =============================================================================


class BatchResponse(BaseModel):
    """Outcome of a batch write. Failures are reported per record."""

    modified: float
    success: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)


# =============================================================================
# Operator Models
# =============================================================================


class UsageResponse(BaseModel):
    """Storage used by an owner and the configured quota, in kilobytes."""

    owner: str
    storage_total: int
    quota: int | None = None  # None means unbounded


class DeleteUserResponse(BaseModel):
    owner: str
    deleted: bool = True


class HealthResponse(BaseModel):
    status: str
    database: str
    engine: str
