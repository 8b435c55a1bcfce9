"""Pydantic schemas for the student timeline."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class TimelineEventType(str, Enum):
    ENROLLMENT_CREATED = "enrollment_created"
    ENROLLMENT_STATUS_CHANGED = "enrollment_status_changed"
    CLASS_ASSIGNED = "class_assigned"
    CLASS_CHANGED = "class_changed"
    SCHOOL_ENTERED = "school_entered"
    SCHOOL_LEFT = "school_left"
    TRANSFER_REQUESTED = "transfer_requested"
    TRANSFER_APPROVED = "transfer_approved"
    TRANSFER_REJECTED = "transfer_rejected"
    TRANSFER_CANCELLED = "transfer_cancelled"
    TRANSFER_COMPLETED = "transfer_completed"


class TimelineFilters(BaseModel):
    from_date: datetime | None = None
    to_date: datetime | None = None
    event_types: list[TimelineEventType] | None = None
    school_id: UUID | None = None
    limit: int | None = Field(None, ge=1, le=100)


class TimelineEvent(BaseModel):
    """One entry of a student's history, rebuilt from ledger rows, transfer stamps and school profiles."""
    id: str
    event_type: TimelineEventType
    occurred_at: datetime
    actor_type: str | None = None
    actor_id: UUID | None = None
    description: str
    school_id: UUID | None = None
    school_name: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    source_table: str
    source_id: str


class TimelineSummary(BaseModel):
    total_events: int
    by_type: dict[str, int]
    by_school: dict[str, int]
    first_event_date: datetime | None
    last_event_date: datetime | None
