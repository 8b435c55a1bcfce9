"""Append-only enrollment event ledger.

The ledger only inserts. There is no update or delete path: timelines and
audits are rebuilt from these rows independently of current-state tables.
"""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.structured_logging import build_log_context
from app.db.enums import EnrollmentEventType
from app.db.models import Enrollment, EnrollmentEvent
from app.schemas.auth import Actor
from app.services.errors import NotFoundError, StoreError
from app.utils.canonical import to_json_document

logger = logging.getLogger(__name__)


def append_event(
    db: Session,
    tenant_id: UUID,
    enrollment_id: UUID,
    event_type: EnrollmentEventType,
    actor: Actor,
    metadata: dict[str, Any] | None = None,
    from_class_group_id: UUID | None = None,
    to_class_group_id: UUID | None = None,
    effective_at: datetime | None = None,
) -> int:
    """
    Append exactly one event row and return its id.

    Store failures are raised as StoreError without retry; the caller
    decides whether a lost event should abort its own operation.
    """
    event = EnrollmentEvent(
        tenant_id=tenant_id,
        enrollment_id=enrollment_id,
        event_type=EnrollmentEventType(event_type).value,
        actor_type=actor.actor_type.value,
        actor_id=actor.actor_id,
        from_class_group_id=from_class_group_id,
        to_class_group_id=to_class_group_id,
        metadata_=_json_metadata(metadata),
    )
    if effective_at is not None:
        event.effective_at = effective_at

    try:
        db.add(event)
        db.flush()
    except SQLAlchemyError as exc:
        raise StoreError(
            "Failed to append enrollment event",
            enrollment_id=enrollment_id,
            event_type=event.event_type,
        ) from exc

    return event.id


def record_event_best_effort(
    db: Session,
    tenant_id: UUID,
    enrollment_id: UUID,
    event_type: EnrollmentEventType,
    actor: Actor,
    metadata: dict[str, Any] | None = None,
    from_class_group_id: UUID | None = None,
    to_class_group_id: UUID | None = None,
) -> str | None:
    """
    Append an event as a side effect of another operation.

    Runs inside a SAVEPOINT so a failed insert leaves the caller's
    transaction usable. Returns None on success, or a warning message
    after logging the failure.
    """
    try:
        with db.begin_nested():
            append_event(
                db,
                tenant_id=tenant_id,
                enrollment_id=enrollment_id,
                event_type=event_type,
                actor=actor,
                metadata=metadata,
                from_class_group_id=from_class_group_id,
                to_class_group_id=to_class_group_id,
            )
    except StoreError as exc:
        logger.warning(
            "Enrollment event %s not recorded: %s",
            EnrollmentEventType(event_type).value,
            exc.__cause__ or exc,
            extra=build_log_context(tenant_id=tenant_id, enrollment_id=enrollment_id),
        )
        return f"Enrollment event '{EnrollmentEventType(event_type).value}' was not recorded for enrollment {enrollment_id}"
    return None


def list_events(db: Session, tenant_id: UUID, enrollment_id: UUID) -> list[EnrollmentEvent]:
    """
    List events for one enrollment, newest first.

    Order is effective_at descending, then insertion order (newest insert
    first) for ties. Every call runs a fresh query.
    """
    try:
        enrollment = db.execute(
            select(Enrollment.id).where(
                Enrollment.id == enrollment_id,
                Enrollment.tenant_id == tenant_id,
                Enrollment.deleted_at.is_(None),
            )
        ).scalar_one_or_none()
        if enrollment is None:
            raise NotFoundError("Enrollment not found", enrollment_id=enrollment_id)

        return list(
            db.execute(
                select(EnrollmentEvent)
                .where(
                    EnrollmentEvent.tenant_id == tenant_id,
                    EnrollmentEvent.enrollment_id == enrollment_id,
                )
                .order_by(EnrollmentEvent.effective_at.desc(), EnrollmentEvent.id.desc())
            ).scalars().all()
        )
    except SQLAlchemyError as exc:
        raise StoreError("Failed to list enrollment events", enrollment_id=enrollment_id) from exc


def _json_metadata(metadata: dict[str, Any] | None) -> dict[str, Any]:
    """Drop None values and render ids and dates so the row stays JSON-native."""
    if not metadata:
        return {}
    return to_json_document({key: value for key, value in metadata.items() if value is not None})
