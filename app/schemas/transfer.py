"""Pydantic schemas for transfer cases."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field

from app.db.enums import TransferDirection, TransferStatus


class TransferCreate(BaseModel):
    """Request from the source tenant to move a student out."""
    student_id: UUID
    from_school_id: UUID | None = None
    to_tenant_id: UUID
    to_school_id: UUID | None = None
    to_academic_year_id: UUID | None = None
    notes: str | None = Field(None, max_length=1000)
    metadata: dict[str, Any] | None = None


class TransferApprove(BaseModel):
    notes: str | None = Field(None, max_length=1000)
    metadata: dict[str, Any] | None = None


class TransferReject(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)
    metadata: dict[str, Any] | None = None


class TransferComplete(BaseModel):
    """Destination-side details applied when the transfer completes."""
    to_class_group_id: UUID | None = None
    school_registration_code: str | None = Field(None, max_length=50)
    notes: str | None = Field(None, max_length=1000)
    metadata: dict[str, Any] | None = None


class TransferCancel(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)
    metadata: dict[str, Any] | None = None


class TransferFilters(BaseModel):
    """Filters for listing transfers. No direction means both."""
    status: TransferStatus | None = None
    direction: TransferDirection | None = None
    student_id: UUID | None = None


class TransferRead(BaseModel):
    """Full transfer case response."""
    id: UUID
    student_id: UUID
    from_tenant_id: UUID
    from_school_id: UUID | None
    from_enrollment_id: UUID | None
    to_tenant_id: UUID
    to_school_id: UUID | None
    to_enrollment_id: UUID | None
    status: TransferStatus
    requested_at: datetime
    approved_at: datetime | None
    rejected_at: datetime | None
    cancelled_at: datetime | None
    completed_at: datetime | None
    snapshot_id: UUID | None
    # ORM attribute is metadata_ (metadata is reserved on declarative models)
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("metadata_", "metadata"),
    )
    created_by: UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}


class TransferActionResponse(BaseModel):
    """Transfer after a transition, plus best-effort failures that did not block it."""
    transfer: TransferRead
    warnings: list[str] = Field(default_factory=list)


class TransferListResponse(BaseModel):
    items: list[TransferRead]
    total: int
    page: int
    per_page: int
    pages: int
