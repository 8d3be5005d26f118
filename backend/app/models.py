"""Pydantic models for the /api envelope and action payloads."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Envelope
# =============================================================================

class ApiRequest(BaseModel):
    """Request body for POST /api."""
    action: str = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)


class SuccessEnvelope(BaseModel):
    status: Literal["success"] = "success"
    data: Any = None


class ErrorEnvelope(BaseModel):
    status: Literal["error"] = "error"
    message: str


# =============================================================================
# Action Payloads
# =============================================================================

class _Payload(BaseModel):
    # Older clients also put the session token here
    model_config = ConfigDict(extra="ignore")


class SyncUpPayload(_Payload):
    state: dict[str, Any]


class EstimatePayload(_Payload):
    estimateId: str = Field(..., min_length=1, max_length=200)


class CompleteJobPayload(EstimatePayload):
    actuals: dict[str, Any] = Field(default_factory=dict)


class CreateWorkOrderPayload(EstimatePayload):
    estimateData: dict[str, Any] | None = None


class LogTimePayload(_Payload):
    workOrderUrl: str | None = None
    startTime: str = Field(..., min_length=1)
    endTime: str | None = None
    user: str = Field(..., min_length=1, max_length=200)


# =============================================================================
# Results
# =============================================================================

class EstimateBatchResult(BaseModel):
    """Per-estimate outcome of one SYNC_UP."""
    upserted: int = 0
    skipped: int = 0
    failed: list[dict[str, str]] = Field(default_factory=list)


class SyncUpResult(BaseModel):
    synced: bool = True
    estimates: EstimateBatchResult = Field(default_factory=EstimateBatchResult)
