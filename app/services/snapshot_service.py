"""Academic record snapshot service - versioned, hashed, immutable captures.

A snapshot aggregates a read-only view of a student's academic data into one
JSON payload and stores the canonical hash next to it:
- version is 1 + max(version) per (tenant, student, kind), guarded by
  uq_snapshot_version and retried on a lost race
- payload and payload_hash are written once and never updated
- finalize supersedes sibling ACTIVE snapshots before marking the target
  final; a transfer packet, final at birth, does the same before insert
- verify recomputes the hash and reports a mismatch instead of raising
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.enums import SnapshotKind, SnapshotSourceType, SnapshotStatus
from app.db.models import (
    AcademicRecordSnapshot,
    AssessmentScore,
    AttendanceRecord,
    Enrollment,
    EnrollmentClassMembership,
    StudentSubjectResult,
)
from app.schemas.auth import Actor
from app.schemas.snapshot import SnapshotFilters, SnapshotGenerate, SnapshotVerification
from app.services import directory_service
from app.services.errors import ConflictError, NotFoundError, StoreError, ValidationError
from app.utils.canonical import HASH_ALGO, HASH_ENCODING, canonical_hash, to_json_document

logger = logging.getLogger(__name__)

PAYLOAD_SCHEMA_VERSION = 1
TRANSFER_SNAPSHOT_NOTES = "Generated automatically for transfer"


# =============================================================================
# Queries
# =============================================================================

def get_snapshot(db: Session, snapshot_id: UUID, tenant_id: UUID) -> AcademicRecordSnapshot | None:
    """Get a snapshot owned by the tenant (not soft-deleted)."""
    return db.execute(
        select(AcademicRecordSnapshot).where(
            AcademicRecordSnapshot.id == snapshot_id,
            AcademicRecordSnapshot.tenant_id == tenant_id,
            AcademicRecordSnapshot.deleted_at.is_(None),
        )
    ).scalar_one_or_none()


def require_snapshot(db: Session, snapshot_id: UUID, tenant_id: UUID) -> AcademicRecordSnapshot:
    snapshot = get_snapshot(db, snapshot_id, tenant_id)
    if not snapshot:
        raise NotFoundError("Snapshot not found", snapshot_id=snapshot_id)
    return snapshot


def list_snapshots(
    db: Session,
    tenant_id: UUID,
    filters: SnapshotFilters | None = None,
) -> list[AcademicRecordSnapshot]:
    """List a tenant's snapshots, newest first."""
    filters = filters or SnapshotFilters()
    query = select(AcademicRecordSnapshot).where(
        AcademicRecordSnapshot.tenant_id == tenant_id,
        AcademicRecordSnapshot.deleted_at.is_(None),
    )
    if filters.student_id:
        query = query.where(AcademicRecordSnapshot.student_id == filters.student_id)
    if filters.kind:
        query = query.where(AcademicRecordSnapshot.kind == filters.kind.value)
    if filters.status:
        query = query.where(AcademicRecordSnapshot.status == filters.status.value)
    if filters.academic_year_id:
        query = query.where(AcademicRecordSnapshot.academic_year_id == filters.academic_year_id)
    if filters.is_final is not None:
        query = query.where(AcademicRecordSnapshot.is_final == filters.is_final)

    query = query.order_by(
        AcademicRecordSnapshot.created_at.desc(),
        AcademicRecordSnapshot.version.desc(),
    )
    return list(db.execute(query).scalars().all())


# =============================================================================
# Payload aggregation
# =============================================================================

def build_payload(
    db: Session,
    tenant_id: UUID,
    student_id: UUID,
    school_id: UUID | None = None,
    academic_year_id: UUID | None = None,
    include_assessments: bool = True,
    include_attendance: bool = True,
    include_results: bool = True,
    generated_at: datetime | None = None,
) -> dict[str, Any]:
    """
    Aggregate the student's academic data into a JSON-native payload.

    Only enrollments owned by the tenant are read. A missing school or
    academic year filter widens the view to all of the tenant's enrollments.
    Raises NotFoundError if the student is missing or soft-deleted.
    """
    student = directory_service.get_student_with_person(db, student_id)
    if not student:
        raise NotFoundError("Student not found", student_id=student_id)

    generated_at = generated_at or datetime.now(timezone.utc)
    person = student.person

    enrollment_query = select(Enrollment).where(
        Enrollment.tenant_id == tenant_id,
        Enrollment.student_id == student_id,
        Enrollment.deleted_at.is_(None),
    )
    if school_id:
        enrollment_query = enrollment_query.where(Enrollment.school_id == school_id)
    if academic_year_id:
        enrollment_query = enrollment_query.where(Enrollment.academic_year_id == academic_year_id)
    enrollments = list(
        db.execute(
            enrollment_query.order_by(Enrollment.enrolled_at, Enrollment.id)
        ).unique().scalars().all()
    )
    enrollment_ids = [e.id for e in enrollments]
    class_groups = _latest_class_groups(db, enrollment_ids)

    payload: dict[str, Any] = {
        "schema_version": PAYLOAD_SCHEMA_VERSION,
        "generated_at": generated_at,
        "student": {
            "id": student.id,
            "global_status": student.global_status,
            "person": {
                "full_name": person.full_name if person else None,
                "preferred_name": person.preferred_name if person else None,
                "birth_date": person.birth_date if person else None,
                "sex": person.sex if person else None,
            },
        },
        "enrollments": [
            {
                "id": e.id,
                "school_id": e.school_id,
                "status": e.status,
                "enrolled_at": e.enrolled_at,
                "left_at": e.left_at,
                "academic_year": (
                    {
                        "id": e.academic_year.id,
                        "name": e.academic_year.name,
                        "start_date": e.academic_year.start_date,
                        "end_date": e.academic_year.end_date,
                    }
                    if e.academic_year
                    else None
                ),
                "class_group": class_groups.get(e.id),
            }
            for e in enrollments
        ],
    }

    if include_assessments:
        scores = _rows_for_enrollments(db, AssessmentScore, enrollment_ids)
        payload["assessment_scores"] = [
            {
                "id": s.id,
                "enrollment_id": s.enrollment_id,
                "score": s.score,
                "status": s.status,
                "assessment": {
                    "name": s.assessment_name,
                    "type": s.assessment_type,
                    "max_score": s.max_score,
                    "weight": s.weight,
                    "subject": s.subject,
                },
            }
            for s in scores
        ]

    if include_attendance:
        records = _rows_for_enrollments(db, AttendanceRecord, enrollment_ids)
        payload["attendance_records"] = [
            {
                "id": r.id,
                "enrollment_id": r.enrollment_id,
                "session_date": r.session_date,
                "status": r.status,
                "minutes_present": r.minutes_present,
            }
            for r in records
        ]

    if include_results:
        results = _rows_for_enrollments(db, StudentSubjectResult, enrollment_ids)
        payload["subject_results"] = [
            {
                "id": r.id,
                "enrollment_id": r.enrollment_id,
                "subject": r.subject,
                "grading_period": r.grading_period,
                "final_score": r.final_score,
                "total_absences": r.total_absences,
                "result_status": r.result_status,
                "is_locked": r.is_locked,
            }
            for r in results
        ]

    # Stored JSON and hashed bytes must be the same document
    return to_json_document(payload)


def _rows_for_enrollments(db: Session, model, enrollment_ids: list[UUID]) -> list:
    if not enrollment_ids:
        return []
    return list(
        db.execute(
            select(model)
            .where(model.enrollment_id.in_(enrollment_ids), model.deleted_at.is_(None))
            .order_by(model.enrollment_id, model.id)
        ).scalars().all()
    )


def _latest_class_groups(db: Session, enrollment_ids: list[UUID]) -> dict[UUID, dict[str, Any]]:
    """Map enrollment id -> its most recent class group."""
    if not enrollment_ids:
        return {}
    memberships = db.execute(
        select(EnrollmentClassMembership)
        .where(
            EnrollmentClassMembership.enrollment_id.in_(enrollment_ids),
            EnrollmentClassMembership.deleted_at.is_(None),
        )
        .order_by(EnrollmentClassMembership.valid_from, EnrollmentClassMembership.id)
    ).unique().scalars().all()

    latest: dict[UUID, dict[str, Any]] = {}
    for membership in memberships:
        group = membership.class_group
        if group is None:
            continue
        latest[membership.enrollment_id] = {
            "id": group.id,
            "name": group.name,
            "grade_level": group.grade_level,
            "shift": group.shift,
        }
    return latest


# =============================================================================
# Version assignment
# =============================================================================

def _next_version(db: Session, tenant_id: UUID, student_id: UUID, kind: SnapshotKind) -> int:
    current_max = db.execute(
        select(func.max(AcademicRecordSnapshot.version)).where(
            AcademicRecordSnapshot.tenant_id == tenant_id,
            AcademicRecordSnapshot.student_id == student_id,
            AcademicRecordSnapshot.kind == kind.value,
            AcademicRecordSnapshot.deleted_at.is_(None),
        )
    ).scalar() or 0
    return current_max + 1


def _is_version_conflict(error: IntegrityError) -> bool:
    constraint_name = getattr(getattr(error.orig, "diag", None), "constraint_name", None)
    if constraint_name:
        return constraint_name == "uq_snapshot_version"
    message = str(error.orig) if error.orig else str(error)
    return "academic_record_snapshots" in message and "version" in message


def _supersede_active_siblings(
    db: Session,
    tenant_id: UUID,
    student_id: UUID,
    kind: str,
    exclude_id: UUID | None = None,
) -> int:
    """Mark every live ACTIVE snapshot of (tenant, student, kind) SUPERSEDED."""
    query = (
        update(AcademicRecordSnapshot)
        .where(
            AcademicRecordSnapshot.tenant_id == tenant_id,
            AcademicRecordSnapshot.student_id == student_id,
            AcademicRecordSnapshot.kind == kind,
            AcademicRecordSnapshot.status == SnapshotStatus.ACTIVE.value,
            AcademicRecordSnapshot.deleted_at.is_(None),
        )
        .values(status=SnapshotStatus.SUPERSEDED.value)
        .execution_options(synchronize_session="fetch")
    )
    if exclude_id is not None:
        query = query.where(AcademicRecordSnapshot.id != exclude_id)
    return db.execute(query).rowcount or 0


def _insert_versioned(
    db: Session,
    tenant_id: UUID,
    student_id: UUID,
    kind: SnapshotKind,
    build: Callable[[int], AcademicRecordSnapshot],
) -> AcademicRecordSnapshot:
    """
    Insert a snapshot under the next free version.

    Each attempt runs in a SAVEPOINT. Losing the version race re-reads
    max(version) and retries up to SNAPSHOT_VERSION_RETRIES times.
    """
    attempts = settings.SNAPSHOT_VERSION_RETRIES + 1
    for attempt in range(attempts):
        version = _next_version(db, tenant_id, student_id, kind)
        snapshot = build(version)
        try:
            with db.begin_nested():
                db.add(snapshot)
                db.flush()
            return snapshot
        except IntegrityError as exc:
            if not _is_version_conflict(exc):
                raise StoreError("Failed to insert snapshot", student_id=student_id, kind=kind.value) from exc
            if attempt < attempts - 1:
                logger.info(
                    "Snapshot version %s taken for kind %s, retrying",
                    version,
                    kind.value,
                    extra=build_log_context(tenant_id=tenant_id),
                )
                continue
            raise ConflictError(
                "Snapshot version already taken",
                student_id=student_id,
                kind=kind.value,
                version=version,
            ) from exc

    raise ConflictError("Snapshot version already taken", student_id=student_id, kind=kind.value)


# =============================================================================
# Generate
# =============================================================================

def generate_snapshot(
    db: Session,
    tenant_id: UUID,
    data: SnapshotGenerate,
    actor: Actor,
) -> AcademicRecordSnapshot:
    """
    Generate a draft snapshot (status ACTIVE, not final, source MANUAL).

    Unset include_* flags default to True.
    """
    if data.kind == SnapshotKind.ACADEMIC_YEAR and not data.academic_year_id:
        raise ValidationError(
            "academic_year_id is required for academic_year snapshots",
            student_id=data.student_id,
            kind=data.kind.value,
        )

    as_of_at = datetime.now(timezone.utc)
    payload = build_payload(
        db,
        tenant_id=tenant_id,
        student_id=data.student_id,
        school_id=data.school_id,
        academic_year_id=data.academic_year_id,
        include_assessments=data.include_assessments is not False,
        include_attendance=data.include_attendance is not False,
        include_results=data.include_results is not False,
        generated_at=as_of_at,
    )
    payload_hash = canonical_hash(payload)

    def build(version: int) -> AcademicRecordSnapshot:
        return AcademicRecordSnapshot(
            tenant_id=tenant_id,
            school_id=data.school_id,
            student_id=data.student_id,
            kind=data.kind.value,
            academic_year_id=data.academic_year_id,
            as_of_at=as_of_at,
            version=version,
            is_final=False,
            status=SnapshotStatus.ACTIVE.value,
            payload=payload,
            payload_schema_version=PAYLOAD_SCHEMA_VERSION,
            payload_hash=payload_hash,
            hash_algo=HASH_ALGO,
            hash_encoding=HASH_ENCODING,
            source_type=SnapshotSourceType.MANUAL.value,
            notes=data.notes,
            created_by=actor.actor_id,
        )

    snapshot = _insert_versioned(db, tenant_id, data.student_id, data.kind, build)
    db.commit()
    db.refresh(snapshot)

    logger.info(
        "Snapshot generated: kind=%s version=%s",
        snapshot.kind,
        snapshot.version,
        extra=build_log_context(tenant_id=tenant_id, user_id=actor.actor_id, snapshot_id=snapshot.id),
    )
    return snapshot


def generate_for_transfer(
    db: Session,
    tenant_id: UUID,
    student_id: UUID,
    school_id: UUID | None,
    transfer_case_id: UUID,
    actor: Actor,
) -> AcademicRecordSnapshot:
    """
    Seal the student's history in the source tenant for a transfer.

    Always kind TRANSFER_PACKET, final at creation, every section included.
    A missing school widens the payload to all of the tenant's enrollments.
    Flushes only; the caller owns the transaction.
    """
    kind = SnapshotKind.TRANSFER_PACKET
    as_of_at = datetime.now(timezone.utc)
    payload = build_payload(
        db,
        tenant_id=tenant_id,
        student_id=student_id,
        school_id=school_id,
        generated_at=as_of_at,
    )
    payload_hash = canonical_hash(payload)

    def build(version: int) -> AcademicRecordSnapshot:
        return AcademicRecordSnapshot(
            tenant_id=tenant_id,
            school_id=school_id,
            student_id=student_id,
            kind=kind.value,
            as_of_at=as_of_at,
            version=version,
            is_final=True,
            status=SnapshotStatus.ACTIVE.value,
            payload=payload,
            payload_schema_version=PAYLOAD_SCHEMA_VERSION,
            payload_hash=payload_hash,
            hash_algo=HASH_ALGO,
            hash_encoding=HASH_ENCODING,
            source_type=SnapshotSourceType.TRANSFER.value,
            source_transfer_case_id=transfer_case_id,
            notes=TRANSFER_SNAPSHOT_NOTES,
            finalized_at=as_of_at,
            finalized_by=actor.actor_id,
            created_by=actor.actor_id,
        )

    # Born final, so earlier packets step aside first
    _supersede_active_siblings(db, tenant_id, student_id, kind.value)
    snapshot = _insert_versioned(db, tenant_id, student_id, kind, build)

    logger.info(
        "Transfer snapshot generated: version=%s",
        snapshot.version,
        extra=build_log_context(
            tenant_id=tenant_id,
            transfer_id=transfer_case_id,
            snapshot_id=snapshot.id,
        ),
    )
    return snapshot


# =============================================================================
# Actions
# =============================================================================

def finalize_snapshot(
    db: Session,
    snapshot_id: UUID,
    tenant_id: UUID,
    notes: str | None = None,
    actor: Actor | None = None,
) -> AcademicRecordSnapshot:
    """
    Finalize a draft snapshot.

    Siblings of the same (tenant, student, kind) still ACTIVE are superseded
    first, then the target is marked final and ACTIVE. Payload is untouched.
    """
    actor = actor or Actor()
    snapshot = require_snapshot(db, snapshot_id, tenant_id)

    if snapshot.is_final:
        raise ConflictError(
            "Snapshot is already final",
            snapshot_id=snapshot.id,
            current_status=snapshot.status,
        )
    if snapshot.status == SnapshotStatus.REVOKED.value:
        raise ConflictError(
            "Cannot finalize a revoked snapshot",
            snapshot_id=snapshot.id,
            current_status=snapshot.status,
        )

    _supersede_active_siblings(db, tenant_id, snapshot.student_id, snapshot.kind, exclude_id=snapshot.id)

    snapshot.is_final = True
    snapshot.status = SnapshotStatus.ACTIVE.value
    snapshot.finalized_at = datetime.now(timezone.utc)
    snapshot.finalized_by = actor.actor_id
    if notes is not None:
        snapshot.notes = notes

    db.commit()
    db.refresh(snapshot)

    logger.info(
        "Snapshot finalized: kind=%s version=%s",
        snapshot.kind,
        snapshot.version,
        extra=build_log_context(tenant_id=tenant_id, user_id=actor.actor_id, snapshot_id=snapshot.id),
    )
    return snapshot


def revoke_snapshot(
    db: Session,
    snapshot_id: UUID,
    tenant_id: UUID,
    reason: str,
    actor: Actor,
) -> AcademicRecordSnapshot:
    """Revoke a snapshot. Terminal; is_final and payload are left as they were."""
    snapshot = require_snapshot(db, snapshot_id, tenant_id)

    if snapshot.status == SnapshotStatus.REVOKED.value:
        raise ConflictError(
            "Snapshot is already revoked",
            snapshot_id=snapshot.id,
            current_status=snapshot.status,
        )

    snapshot.status = SnapshotStatus.REVOKED.value
    snapshot.revoked_at = datetime.now(timezone.utc)
    snapshot.revoked_by = actor.actor_id
    snapshot.revoke_reason = reason

    db.commit()
    db.refresh(snapshot)

    logger.info(
        "Snapshot revoked",
        extra=build_log_context(tenant_id=tenant_id, user_id=actor.actor_id, snapshot_id=snapshot.id),
    )
    return snapshot


def verify_snapshot(db: Session, snapshot_id: UUID, tenant_id: UUID) -> SnapshotVerification:
    """
    Recompute the payload hash and compare it with the stored one.

    Uses the algorithm recorded on the row. Works for revoked snapshots too.
    """
    snapshot = require_snapshot(db, snapshot_id, tenant_id)

    try:
        computed_hash = canonical_hash(snapshot.payload, algo=snapshot.hash_algo)
    except ValueError as exc:
        raise ValidationError(
            "Unsupported hash algorithm",
            snapshot_id=snapshot.id,
            hash_algo=snapshot.hash_algo,
        ) from exc

    valid = computed_hash == snapshot.payload_hash
    if not valid:
        logger.warning(
            "Snapshot integrity check failed: computed=%s stored=%s",
            computed_hash,
            snapshot.payload_hash,
            extra=build_log_context(tenant_id=tenant_id, snapshot_id=snapshot.id),
        )

    return SnapshotVerification(
        snapshot_id=snapshot.id,
        valid=valid,
        computed_hash=computed_hash,
        stored_hash=snapshot.payload_hash,
        hash_algo=snapshot.hash_algo,
    )
