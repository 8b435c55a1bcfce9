"""Pydantic schemas for academic record snapshots."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from app.db.enums import SnapshotKind, SnapshotSourceType, SnapshotStatus


class SnapshotGenerate(BaseModel):
    """Request to generate a draft snapshot."""
    student_id: UUID
    kind: SnapshotKind
    school_id: UUID | None = None
    academic_year_id: UUID | None = None
    # Unset flags include the section
    include_assessments: bool | None = None
    include_attendance: bool | None = None
    include_results: bool | None = None
    notes: str | None = Field(None, max_length=2000)


class SnapshotFinalize(BaseModel):
    notes: str | None = Field(None, max_length=2000)


class SnapshotRevoke(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class SnapshotFilters(BaseModel):
    """Filters for listing snapshots."""
    student_id: UUID | None = None
    kind: SnapshotKind | None = None
    status: SnapshotStatus | None = None
    academic_year_id: UUID | None = None
    is_final: bool | None = None


class SnapshotListItem(BaseModel):
    """Snapshot without payload, for list views."""
    id: UUID
    tenant_id: UUID
    school_id: UUID | None
    student_id: UUID
    kind: SnapshotKind
    academic_year_id: UUID | None
    as_of_at: datetime
    version: int
    is_final: bool
    status: SnapshotStatus
    payload_hash: str
    source_type: SnapshotSourceType
    source_transfer_case_id: UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}


class SnapshotRead(SnapshotListItem):
    """Full snapshot response."""
    payload: dict[str, Any]
    payload_schema_version: int
    hash_algo: str
    hash_encoding: str
    notes: str | None
    finalized_at: datetime | None
    finalized_by: UUID | None
    revoked_at: datetime | None
    revoked_by: UUID | None
    revoke_reason: str | None
    created_by: UUID | None


class SnapshotVerification(BaseModel):
    """Integrity check result. A mismatch is reported, not raised."""
    snapshot_id: UUID
    valid: bool
    computed_hash: str
    stored_hash: str
    hash_algo: str


class SnapshotListResponse(BaseModel):
    items: list[SnapshotListItem]
    total: int
