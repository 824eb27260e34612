"""Queue schemas - Pydantic models for the queue API."""

from datetime import date
from uuid import UUID

from pydantic import BaseModel, Field

from queuedesk.db.enums import DEFAULT_SKIP_REASON


# =============================================================================
# Requests
# =============================================================================

class CheckInRequest(BaseModel):
    """Schema for checking an arrived appointment into its day's queue."""
    appointment_id: UUID
    organization_id: UUID
    service_id: UUID
    queue_date: date = Field(..., alias="date")


class TokenActionRequest(BaseModel):
    """Schema for complete / no-show / prioritize."""
    appointment_id: UUID


class SkipRequest(BaseModel):
    """Schema for removing a token and cancelling its appointment."""
    appointment_id: UUID
    reason: str = Field(DEFAULT_SKIP_REASON, min_length=1, max_length=500)


# =============================================================================
# Responses
# =============================================================================

class CheckInResponse(BaseModel):
    queue_id: UUID
    position: int


class CallNextResponse(BaseModel):
    queue_id: UUID
    appointment_id: UUID
    next_in_line: UUID | None = None


class TokenRead(BaseModel):
    appointment_id: UUID
    position: int
    prioritized: bool = False

    model_config = {"from_attributes": True}


class QueueRead(BaseModel):
    """Full queue view for operator screens."""
    id: UUID
    organization_id: UUID
    service_id: UUID
    queue_date: date
    current_token: UUID | None
    active_tokens: list[TokenRead]
    completed_count: int
    no_show_count: int
    total_served: int
    is_active: bool
    version: int


class QueueSummary(BaseModel):
    """Queue list row."""
    id: UUID
    service_id: UUID
    queue_date: date
    current_token: UUID | None
    active_count: int
    total_served: int
    is_active: bool


class QueueStatusRead(BaseModel):
    queue_id: UUID
    is_active: bool
    active_count: int
    current_token: UUID | None
    completed_count: int
    no_show_count: int
    total_served: int
    estimated_wait_minutes: int


class ReconcileResponse(BaseModel):
    queue_id: UUID
    updated: int


class AppointmentQueueRead(BaseModel):
    """What a customer's screen shows while they wait."""
    id: UUID
    status: str
    token_number: str | None
    queue_position: int | None
    estimated_wait_minutes: int | None
    prioritized: bool

    model_config = {"from_attributes": True}
