"""Pydantic schemas for enrollment ledger events."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field

from app.db.enums import ActorType, EnrollmentEventType


class EnrollmentEventRead(BaseModel):
    id: int
    tenant_id: UUID
    enrollment_id: UUID
    event_type: EnrollmentEventType
    effective_at: datetime
    actor_type: ActorType
    actor_id: UUID | None
    from_class_group_id: UUID | None
    to_class_group_id: UUID | None
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("metadata_", "metadata"),
    )
    created_at: datetime

    model_config = {"from_attributes": True}
