"""Transfer case state machine.

Lifecycle (see TransferStatus):
    requested -> approved -> completed
    requested -> rejected
    requested | approved -> cancelled

A transfer case is shared by two tenants. The source tenant creates and
removes it; the destination tenant approves, rejects and completes it;
either may cancel. Authority is checked explicitly on every transition.

Completion runs as a series of check-then-create steps that commit on their
own. A failure part way leaves the case APPROVED, and calling complete again
resumes without duplicating rows. Event writes and the transfer snapshot are
best effort: their failures are logged and returned as warnings.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.structured_logging import build_log_context
from app.db.enums import EnrollmentEventType, TransferDirection, TransferStatus
from app.db.models import Enrollment, TransferCase
from app.schemas.auth import Actor
from app.schemas.transfer import (
    TransferApprove,
    TransferCancel,
    TransferComplete,
    TransferCreate,
    TransferFilters,
    TransferReject,
)
from app.services import directory_service, enrollment_event_service, enrollment_service, snapshot_service
from app.services.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    RecordsServiceError,
    StoreError,
    ValidationError,
)
from app.utils.canonical import to_json_document
from app.utils.pagination import PaginationParams, paginate_select

logger = logging.getLogger(__name__)


@dataclass
class TransferResult:
    """A transfer after a transition, plus best-effort failures."""
    transfer: TransferCase
    warnings: list[str] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Guards
# =============================================================================

def require_tenant_is(expected_tenant_id: UUID, acting_tenant_id: UUID, action: str) -> None:
    """Raise ForbiddenError unless the acting tenant is the expected one."""
    if expected_tenant_id != acting_tenant_id:
        raise ForbiddenError(
            f"Tenant is not allowed to {action} this transfer",
            action=action,
            expected_tenant_id=expected_tenant_id,
            acting_tenant_id=acting_tenant_id,
        )


def _require_status(transfer: TransferCase, allowed: tuple[TransferStatus, ...], action: str) -> None:
    if transfer.status not in {s.value for s in allowed}:
        raise ConflictError(
            f"Cannot {action} a transfer with status '{transfer.status}'",
            transfer_id=transfer.id,
            current_status=transfer.status,
            required_status=[s.value for s in allowed],
        )


def _merge_metadata(
    existing: dict[str, Any] | None,
    updates: dict[str, Any],
    caller: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Transition keys over existing metadata, caller-supplied keys last."""
    merged = dict(existing or {})
    merged.update({key: value for key, value in updates.items() if value is not None})
    if caller:
        merged.update(caller)
    return to_json_document(merged)


def _is_pending_conflict(error: IntegrityError) -> bool:
    constraint_name = getattr(getattr(error.orig, "diag", None), "constraint_name", None)
    if constraint_name:
        return constraint_name == "uq_transfer_cases_student_pending"
    message = str(error.orig) if error.orig else str(error)
    return "transfer_cases.student_id" in message or "uq_transfer_cases_student_pending" in message


# =============================================================================
# Queries
# =============================================================================

def get_transfer(db: Session, transfer_id: UUID, tenant_id: UUID) -> TransferCase | None:
    """Get a transfer visible to the tenant (source or destination side)."""
    return db.execute(
        select(TransferCase).where(
            TransferCase.id == transfer_id,
            or_(
                TransferCase.from_tenant_id == tenant_id,
                TransferCase.to_tenant_id == tenant_id,
            ),
            TransferCase.deleted_at.is_(None),
        )
    ).scalar_one_or_none()


def require_transfer(db: Session, transfer_id: UUID, tenant_id: UUID) -> TransferCase:
    transfer = get_transfer(db, transfer_id, tenant_id)
    if not transfer:
        raise NotFoundError("Transfer not found", transfer_id=transfer_id)
    return transfer


def get_pending_for_student(db: Session, student_id: UUID) -> TransferCase | None:
    return db.execute(
        select(TransferCase)
        .where(
            TransferCase.student_id == student_id,
            TransferCase.status.in_([s.value for s in TransferStatus.pending()]),
            TransferCase.deleted_at.is_(None),
        )
        .limit(1)
    ).scalar_one_or_none()


def list_transfers(
    db: Session,
    tenant_id: UUID,
    filters: TransferFilters | None = None,
    pagination: PaginationParams | None = None,
) -> tuple[list[TransferCase], int]:
    """
    List transfers touching the tenant, newest request first.

    Returns:
        (transfers, total_count)
    """
    filters = filters or TransferFilters()
    pagination = pagination or PaginationParams()

    query = select(TransferCase).where(TransferCase.deleted_at.is_(None))
    if filters.direction == TransferDirection.INCOMING:
        query = query.where(TransferCase.to_tenant_id == tenant_id)
    elif filters.direction == TransferDirection.OUTGOING:
        query = query.where(TransferCase.from_tenant_id == tenant_id)
    else:
        query = query.where(
            or_(
                TransferCase.from_tenant_id == tenant_id,
                TransferCase.to_tenant_id == tenant_id,
            )
        )
    if filters.status:
        query = query.where(TransferCase.status == filters.status.value)
    if filters.student_id:
        query = query.where(TransferCase.student_id == filters.student_id)

    query = query.order_by(TransferCase.requested_at.desc(), TransferCase.id)
    return paginate_select(db, query, pagination)


# =============================================================================
# Create (source tenant)
# =============================================================================

def create_transfer(db: Session, tenant_id: UUID, data: TransferCreate, actor: Actor) -> TransferResult:
    """
    Open a transfer request from the acting (source) tenant.

    Raises:
        ValidationError: student not in tenant, no active source enrollment,
            unknown destination tenant, or destination school mismatch
        ConflictError: student already has a pending transfer
    """
    if not directory_service.get_tenant_profile(db, tenant_id, data.student_id):
        raise ValidationError(
            "Student has no active profile in this tenant",
            student_id=data.student_id,
            tenant_id=tenant_id,
        )

    from_enrollment: Enrollment | None = None
    if data.from_school_id:
        from_enrollment = enrollment_service.find_active_by_student_and_school(
            db, data.student_id, data.from_school_id
        )
        if not from_enrollment or from_enrollment.tenant_id != tenant_id:
            raise ValidationError(
                "Student has no active enrollment at the source school",
                student_id=data.student_id,
                school_id=data.from_school_id,
            )

    if not directory_service.get_tenant_by_id(db, data.to_tenant_id):
        raise ValidationError("Destination tenant not found", to_tenant_id=data.to_tenant_id)

    if data.to_school_id:
        to_school = directory_service.get_school_by_id(db, data.to_school_id)
        if not to_school or to_school.tenant_id != data.to_tenant_id:
            raise ValidationError(
                "Destination school does not belong to the destination tenant",
                to_school_id=data.to_school_id,
                to_tenant_id=data.to_tenant_id,
            )

    existing = get_pending_for_student(db, data.student_id)
    if existing:
        raise ConflictError(
            "Student already has a pending transfer",
            student_id=data.student_id,
            transfer_id=existing.id,
            current_status=existing.status,
        )

    transfer = TransferCase(
        student_id=data.student_id,
        from_tenant_id=tenant_id,
        from_school_id=data.from_school_id,
        from_enrollment_id=from_enrollment.id if from_enrollment else None,
        to_tenant_id=data.to_tenant_id,
        to_school_id=data.to_school_id,
        status=TransferStatus.REQUESTED.value,
        requested_at=_utcnow(),
        metadata_=_merge_metadata(
            None,
            {"notes": data.notes, "to_academic_year_id": data.to_academic_year_id},
            data.metadata,
        ),
        created_by=actor.actor_id,
    )
    try:
        with db.begin_nested():
            db.add(transfer)
            db.flush()
    except IntegrityError as exc:
        if _is_pending_conflict(exc):
            raise ConflictError(
                "Student already has a pending transfer",
                student_id=data.student_id,
            ) from exc
        raise StoreError("Failed to create transfer", student_id=data.student_id) from exc

    warnings: list[str] = []
    if from_enrollment:
        _append_warning(
            warnings,
            enrollment_event_service.record_event_best_effort(
                db,
                tenant_id=tenant_id,
                enrollment_id=from_enrollment.id,
                event_type=EnrollmentEventType.TRANSFER_REQUESTED,
                actor=actor,
                metadata={
                    "transfer_id": transfer.id,
                    "to_tenant_id": data.to_tenant_id,
                    "to_school_id": data.to_school_id,
                },
            ),
        )

    db.commit()
    db.refresh(transfer)

    logger.info(
        "Transfer requested",
        extra=build_log_context(tenant_id=tenant_id, user_id=actor.actor_id, transfer_id=transfer.id),
    )
    return TransferResult(transfer=transfer, warnings=warnings)


# =============================================================================
# Destination decisions
# =============================================================================

def approve_transfer(
    db: Session,
    transfer_id: UUID,
    tenant_id: UUID,
    data: TransferApprove,
    actor: Actor,
) -> TransferCase:
    transfer = require_transfer(db, transfer_id, tenant_id)
    require_tenant_is(transfer.to_tenant_id, tenant_id, action="approve")
    _require_status(transfer, (TransferStatus.REQUESTED,), action="approve")

    transfer.status = TransferStatus.APPROVED.value
    transfer.approved_at = _utcnow()
    transfer.metadata_ = _merge_metadata(transfer.metadata_, {"approval_notes": data.notes}, data.metadata)
    db.commit()
    db.refresh(transfer)

    logger.info(
        "Transfer approved",
        extra=build_log_context(tenant_id=tenant_id, user_id=actor.actor_id, transfer_id=transfer.id),
    )
    return transfer


def reject_transfer(
    db: Session,
    transfer_id: UUID,
    tenant_id: UUID,
    data: TransferReject,
    actor: Actor,
) -> TransferCase:
    transfer = require_transfer(db, transfer_id, tenant_id)
    require_tenant_is(transfer.to_tenant_id, tenant_id, action="reject")
    _require_status(transfer, (TransferStatus.REQUESTED,), action="reject")

    transfer.status = TransferStatus.REJECTED.value
    transfer.rejected_at = _utcnow()
    transfer.metadata_ = _merge_metadata(transfer.metadata_, {"rejection_reason": data.reason}, data.metadata)
    db.commit()
    db.refresh(transfer)

    logger.info(
        "Transfer rejected",
        extra=build_log_context(tenant_id=tenant_id, user_id=actor.actor_id, transfer_id=transfer.id),
    )
    return transfer


def cancel_transfer(
    db: Session,
    transfer_id: UUID,
    tenant_id: UUID,
    data: TransferCancel,
    actor: Actor,
) -> TransferCase:
    """Cancel a pending transfer. Either side may cancel."""
    transfer = require_transfer(db, transfer_id, tenant_id)
    if tenant_id not in (transfer.from_tenant_id, transfer.to_tenant_id):
        raise ForbiddenError(
            "Tenant is not allowed to cancel this transfer",
            action="cancel",
            acting_tenant_id=tenant_id,
        )
    _require_status(transfer, TransferStatus.pending(), action="cancel")

    transfer.status = TransferStatus.CANCELLED.value
    transfer.cancelled_at = _utcnow()
    transfer.metadata_ = _merge_metadata(
        transfer.metadata_,
        {"cancellation_reason": data.reason, "cancelled_by_tenant": tenant_id},
        data.metadata,
    )
    db.commit()
    db.refresh(transfer)

    logger.info(
        "Transfer cancelled",
        extra=build_log_context(tenant_id=tenant_id, user_id=actor.actor_id, transfer_id=transfer.id),
    )
    return transfer


# =============================================================================
# Complete (destination tenant)
# =============================================================================

def complete_transfer(
    db: Session,
    transfer_id: UUID,
    tenant_id: UUID,
    data: TransferComplete,
    actor: Actor,
) -> TransferResult:
    """
    Complete an approved transfer.

    Steps:
    1. With a destination school: resolve or create the destination tenant
       and school profiles, resolve the academic year (metadata override,
       else the school's active year), then resolve or create the enrollment
       and optional class membership.
    2. Record created / class_membership_added events for new rows only.
    3. Mark the source enrollment transferred, close its open membership,
       stamp left_at on the source school profile and record
       transfer_completed.
    4. Seal the source history with a transfer snapshot (best effort).
    5. Mark the case completed.
    """
    transfer = require_transfer(db, transfer_id, tenant_id)
    require_tenant_is(transfer.to_tenant_id, tenant_id, action="complete")
    _require_status(transfer, (TransferStatus.APPROVED,), action="complete")

    warnings: list[str] = []
    to_enrollment: Enrollment | None = None

    if transfer.to_school_id:
        to_enrollment = _enroll_at_destination(db, transfer, data, actor, warnings)

    if transfer.from_enrollment_id:
        _close_source_enrollment(db, transfer, to_enrollment, actor, warnings)

    snapshot_id, snapshot_error = _seal_source_history(db, transfer, actor)
    if snapshot_error:
        warnings.append(f"Transfer snapshot was not generated: {snapshot_error}")

    transfer.status = TransferStatus.COMPLETED.value
    transfer.completed_at = _utcnow()
    transfer.to_enrollment_id = to_enrollment.id if to_enrollment else None
    transfer.snapshot_id = snapshot_id
    transfer.metadata_ = _merge_metadata(
        transfer.metadata_,
        {
            "completion_notes": data.notes,
            "snapshot_id": snapshot_id,
            "snapshot_error": snapshot_error,
        },
        data.metadata,
    )
    db.commit()
    db.refresh(transfer)

    logger.info(
        "Transfer completed: to_enrollment=%s snapshot=%s",
        transfer.to_enrollment_id,
        transfer.snapshot_id,
        extra=build_log_context(tenant_id=tenant_id, user_id=actor.actor_id, transfer_id=transfer.id),
    )
    return TransferResult(transfer=transfer, warnings=warnings)


def _enroll_at_destination(
    db: Session,
    transfer: TransferCase,
    data: TransferComplete,
    actor: Actor,
    warnings: list[str],
) -> Enrollment | None:
    """Steps 1-2. Returns None when no academic year resolves."""
    to_school_id = transfer.to_school_id
    if data.to_class_group_id and not directory_service.get_class_group(
        db, data.to_class_group_id, school_id=to_school_id
    ):
        raise ValidationError(
            "Class group does not belong to the destination school",
            class_group_id=data.to_class_group_id,
            to_school_id=to_school_id,
        )

    enrollment_service.resolve_or_create_tenant_profile(
        db,
        tenant_id=transfer.to_tenant_id,
        student_id=transfer.student_id,
        notes=f"Transferred from tenant {transfer.from_tenant_id}",
        created_by=actor.actor_id,
    )
    enrollment_service.resolve_or_create_school_profile(
        db,
        tenant_id=transfer.to_tenant_id,
        school_id=to_school_id,
        student_id=transfer.student_id,
        school_registration_code=data.school_registration_code,
        created_by=actor.actor_id,
    )
    db.commit()

    year = enrollment_service.resolve_academic_year(
        db, to_school_id, (transfer.metadata_ or {}).get("to_academic_year_id")
    )
    if not year:
        logger.info(
            "No academic year for destination school, completing without enrollment",
            extra=build_log_context(tenant_id=transfer.to_tenant_id, transfer_id=transfer.id),
        )
        return None

    enrollment, created = enrollment_service.resolve_or_create_enrollment(
        db,
        tenant_id=transfer.to_tenant_id,
        school_id=to_school_id,
        student_id=transfer.student_id,
        academic_year_id=year.id,
        notes=f"Transfer from {transfer.from_school_id or transfer.from_tenant_id}",
        context={"transfer_id": transfer.id},
        created_by=actor.actor_id,
        exclude_enrollment_id=transfer.from_enrollment_id,
    )
    if created:
        _append_warning(
            warnings,
            enrollment_event_service.record_event_best_effort(
                db,
                tenant_id=transfer.to_tenant_id,
                enrollment_id=enrollment.id,
                event_type=EnrollmentEventType.CREATED,
                actor=actor,
                metadata={
                    "transfer_id": transfer.id,
                    "from_tenant_id": transfer.from_tenant_id,
                    "from_school_id": transfer.from_school_id,
                },
            ),
        )

    if data.to_class_group_id:
        _, membership_created = enrollment_service.resolve_or_create_class_membership(
            db,
            tenant_id=transfer.to_tenant_id,
            enrollment_id=enrollment.id,
            class_group_id=data.to_class_group_id,
            reason="Transfer",
            created_by=actor.actor_id,
        )
        if membership_created:
            _append_warning(
                warnings,
                enrollment_event_service.record_event_best_effort(
                    db,
                    tenant_id=transfer.to_tenant_id,
                    enrollment_id=enrollment.id,
                    event_type=EnrollmentEventType.CLASS_MEMBERSHIP_ADDED,
                    actor=actor,
                    metadata={"class_group_id": data.to_class_group_id, "transfer_id": transfer.id},
                    to_class_group_id=data.to_class_group_id,
                ),
            )

    db.commit()
    return enrollment


def _close_source_enrollment(
    db: Session,
    transfer: TransferCase,
    to_enrollment: Enrollment | None,
    actor: Actor,
    warnings: list[str],
) -> None:
    """Step 3. Skipped when the source enrollment is already transferred."""
    source = enrollment_service.get_enrollment(db, transfer.from_enrollment_id)
    if source is None:
        return
    if not enrollment_service.mark_transferred(db, source, updated_by=actor.actor_id):
        return

    enrollment_service.close_open_class_membership(db, source.id)
    # A same-school move keeps the shared school profile open
    if source.school_id != transfer.to_school_id:
        enrollment_service.mark_school_profile_left(
            db,
            tenant_id=source.tenant_id,
            school_id=source.school_id,
            student_id=source.student_id,
            left_at=source.left_at,
            updated_by=actor.actor_id,
        )
    _append_warning(
        warnings,
        enrollment_event_service.record_event_best_effort(
            db,
            tenant_id=transfer.from_tenant_id,
            enrollment_id=source.id,
            event_type=EnrollmentEventType.TRANSFER_COMPLETED,
            actor=actor,
            metadata={
                "transfer_id": transfer.id,
                "to_tenant_id": transfer.to_tenant_id,
                "to_school_id": transfer.to_school_id,
                "to_enrollment_id": to_enrollment.id if to_enrollment else None,
            },
        ),
    )
    db.commit()


def _seal_source_history(db: Session, transfer: TransferCase, actor: Actor) -> tuple[UUID | None, str | None]:
    """
    Step 4. Generate the transfer snapshot in the source tenant.

    Runs in a SAVEPOINT; a failure is logged and returned, never raised.
    """
    try:
        with db.begin_nested():
            snapshot = snapshot_service.generate_for_transfer(
                db,
                tenant_id=transfer.from_tenant_id,
                student_id=transfer.student_id,
                school_id=transfer.from_school_id,
                transfer_case_id=transfer.id,
                actor=actor,
            )
        return snapshot.id, None
    except (RecordsServiceError, SQLAlchemyError) as exc:
        message = exc.message if isinstance(exc, RecordsServiceError) else str(exc)
        logger.warning(
            "Failed to generate transfer snapshot: %s",
            message,
            extra=build_log_context(tenant_id=transfer.from_tenant_id, transfer_id=transfer.id),
        )
        return None, message


def _append_warning(warnings: list[str], warning: str | None) -> None:
    if warning:
        warnings.append(warning)


# =============================================================================
# Remove (source tenant)
# =============================================================================

def remove_transfer(db: Session, transfer_id: UUID, tenant_id: UUID, actor: Actor) -> None:
    """Soft-delete a transfer that has not completed."""
    transfer = require_transfer(db, transfer_id, tenant_id)
    require_tenant_is(transfer.from_tenant_id, tenant_id, action="remove")
    if transfer.status == TransferStatus.COMPLETED.value:
        raise ConflictError(
            "Cannot remove a completed transfer",
            transfer_id=transfer.id,
            current_status=transfer.status,
        )

    transfer.deleted_at = _utcnow()
    transfer.deleted_by = actor.actor_id
    db.commit()

    logger.info(
        "Transfer removed",
        extra=build_log_context(tenant_id=tenant_id, user_id=actor.actor_id, transfer_id=transfer.id),
    )
