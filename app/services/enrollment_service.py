"""Enrollment store and the check-then-create steps used by transfer completion.

Every resolve_or_create_* helper looks for an existing live row first and
only inserts when none is found, returning ``(row, created)``. Re-running a
partially failed completion therefore never duplicates profiles,
enrollments or memberships. Helpers flush; callers commit.
"""

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.db.enums import EnrollmentStatus, ProfileStatus
from app.db.models import (
    AcademicYear,
    Enrollment,
    EnrollmentClassMembership,
    StudentSchoolProfile,
    StudentTenantProfile,
)
from app.services import directory_service
from app.services.errors import ValidationError
from app.utils.canonical import to_json_document


# =============================================================================
# Enrollment store
# =============================================================================

def get_enrollment(db: Session, enrollment_id: UUID, tenant_id: UUID | None = None) -> Enrollment | None:
    query = select(Enrollment).where(
        Enrollment.id == enrollment_id,
        Enrollment.deleted_at.is_(None),
    )
    if tenant_id:
        query = query.where(Enrollment.tenant_id == tenant_id)
    return db.execute(query).unique().scalar_one_or_none()


def find_active_by_student_and_school(db: Session, student_id: UUID, school_id: UUID) -> Enrollment | None:
    """Most recent active enrollment of the student at the school."""
    return db.execute(
        select(Enrollment)
        .where(
            Enrollment.student_id == student_id,
            Enrollment.school_id == school_id,
            Enrollment.status == EnrollmentStatus.ACTIVE.value,
            Enrollment.deleted_at.is_(None),
        )
        .order_by(Enrollment.enrolled_at.desc())
        .limit(1)
    ).unique().scalar_one_or_none()


def create_enrollment(
    db: Session,
    tenant_id: UUID,
    school_id: UUID,
    student_id: UUID,
    academic_year_id: UUID | None,
    enrolled_at: date | None = None,
    notes: str | None = None,
    context: dict[str, Any] | None = None,
    created_by: UUID | None = None,
) -> Enrollment:
    enrollment = Enrollment(
        tenant_id=tenant_id,
        school_id=school_id,
        academic_year_id=academic_year_id,
        student_id=student_id,
        status=EnrollmentStatus.ACTIVE.value,
        enrolled_at=enrolled_at or date.today(),
        notes=notes,
        context=to_json_document(context or {}),
        created_by=created_by,
    )
    db.add(enrollment)
    db.flush()
    return enrollment


def mark_transferred(
    db: Session,
    enrollment: Enrollment,
    left_at: date | None = None,
    updated_by: UUID | None = None,
) -> bool:
    """
    Move an enrollment to TRANSFERRED.

    Returns False when it already was, so callers can skip side effects.
    """
    if enrollment.status == EnrollmentStatus.TRANSFERRED.value:
        return False
    enrollment.status = EnrollmentStatus.TRANSFERRED.value
    enrollment.left_at = left_at or date.today()
    enrollment.updated_by = updated_by
    db.flush()
    return True


def mark_school_profile_left(
    db: Session,
    tenant_id: UUID,
    school_id: UUID,
    student_id: UUID,
    left_at: date | None = None,
    updated_by: UUID | None = None,
) -> StudentSchoolProfile | None:
    """Stamp left_at on the student's live school profile, keeping an existing stamp."""
    profile = db.execute(
        select(StudentSchoolProfile)
        .where(
            StudentSchoolProfile.tenant_id == tenant_id,
            StudentSchoolProfile.school_id == school_id,
            StudentSchoolProfile.student_id == student_id,
            StudentSchoolProfile.deleted_at.is_(None),
        )
        .limit(1)
    ).scalar_one_or_none()
    if profile is None or profile.left_at is not None:
        return profile

    profile.left_at = left_at or date.today()
    profile.status = ProfileStatus.INACTIVE.value
    profile.updated_by = updated_by
    db.flush()
    return profile


def close_open_class_membership(db: Session, enrollment_id: UUID, valid_to: date | None = None) -> int:
    """Close every open membership of the enrollment. Returns the count closed."""
    result = db.execute(
        update(EnrollmentClassMembership)
        .where(
            EnrollmentClassMembership.enrollment_id == enrollment_id,
            EnrollmentClassMembership.valid_to.is_(None),
            EnrollmentClassMembership.deleted_at.is_(None),
        )
        .values(valid_to=valid_to or date.today())
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


# =============================================================================
# Check-then-create steps
# =============================================================================

def resolve_or_create_tenant_profile(
    db: Session,
    tenant_id: UUID,
    student_id: UUID,
    notes: str | None = None,
    created_by: UUID | None = None,
) -> tuple[StudentTenantProfile, bool]:
    existing = directory_service.get_tenant_profile(db, tenant_id, student_id, active_only=False)
    if existing:
        return existing, False

    profile = StudentTenantProfile(
        tenant_id=tenant_id,
        student_id=student_id,
        status=ProfileStatus.ACTIVE.value,
        notes=notes,
        created_by=created_by,
    )
    db.add(profile)
    db.flush()
    return profile, True


def resolve_or_create_school_profile(
    db: Session,
    tenant_id: UUID,
    school_id: UUID,
    student_id: UUID,
    school_registration_code: str | None = None,
    created_by: UUID | None = None,
) -> tuple[StudentSchoolProfile, bool]:
    existing = db.execute(
        select(StudentSchoolProfile)
        .where(
            StudentSchoolProfile.school_id == school_id,
            StudentSchoolProfile.student_id == student_id,
            StudentSchoolProfile.deleted_at.is_(None),
        )
        .limit(1)
    ).scalar_one_or_none()
    if existing:
        return existing, False

    profile = StudentSchoolProfile(
        tenant_id=tenant_id,
        school_id=school_id,
        student_id=student_id,
        school_registration_code=school_registration_code,
        status=ProfileStatus.ACTIVE.value,
        entered_at=date.today(),
        created_by=created_by,
    )
    db.add(profile)
    db.flush()
    return profile, True


def resolve_academic_year(
    db: Session,
    school_id: UUID,
    academic_year_id: UUID | str | None = None,
) -> AcademicYear | None:
    """
    Explicit override if given, else the school's active year.

    An override that does not belong to the school is a ValidationError.
    """
    if academic_year_id:
        try:
            year_id = academic_year_id if isinstance(academic_year_id, UUID) else UUID(str(academic_year_id))
        except ValueError as exc:
            raise ValidationError("Invalid academic year id", academic_year_id=academic_year_id) from exc
        year = directory_service.get_academic_year(db, year_id, school_id=school_id)
        if not year:
            raise ValidationError(
                "Academic year does not belong to the destination school",
                academic_year_id=year_id,
                school_id=school_id,
            )
        return year
    return directory_service.find_active_year(db, school_id)


def resolve_or_create_enrollment(
    db: Session,
    tenant_id: UUID,
    school_id: UUID,
    student_id: UUID,
    academic_year_id: UUID,
    notes: str | None = None,
    context: dict[str, Any] | None = None,
    created_by: UUID | None = None,
    exclude_enrollment_id: UUID | None = None,
) -> tuple[Enrollment, bool]:
    """
    Reuse a live active enrollment for (student, school, year) if one exists.

    exclude_enrollment_id keeps a same-school transfer from picking up the
    enrollment it is moving away from.
    """
    query = select(Enrollment).where(
        Enrollment.tenant_id == tenant_id,
        Enrollment.school_id == school_id,
        Enrollment.student_id == student_id,
        Enrollment.academic_year_id == academic_year_id,
        Enrollment.status == EnrollmentStatus.ACTIVE.value,
        Enrollment.deleted_at.is_(None),
    )
    if exclude_enrollment_id:
        query = query.where(Enrollment.id != exclude_enrollment_id)
    existing = db.execute(query.limit(1)).unique().scalar_one_or_none()
    if existing:
        return existing, False

    enrollment = create_enrollment(
        db,
        tenant_id=tenant_id,
        school_id=school_id,
        student_id=student_id,
        academic_year_id=academic_year_id,
        notes=notes,
        context=context,
        created_by=created_by,
    )
    return enrollment, True


def resolve_or_create_class_membership(
    db: Session,
    tenant_id: UUID,
    enrollment_id: UUID,
    class_group_id: UUID,
    reason: str | None = None,
    created_by: UUID | None = None,
) -> tuple[EnrollmentClassMembership, bool]:
    existing = db.execute(
        select(EnrollmentClassMembership)
        .where(
            EnrollmentClassMembership.enrollment_id == enrollment_id,
            EnrollmentClassMembership.class_group_id == class_group_id,
            EnrollmentClassMembership.valid_to.is_(None),
            EnrollmentClassMembership.deleted_at.is_(None),
        )
        .limit(1)
    ).unique().scalar_one_or_none()
    if existing:
        return existing, False

    membership = EnrollmentClassMembership(
        tenant_id=tenant_id,
        enrollment_id=enrollment_id,
        class_group_id=class_group_id,
        valid_from=date.today(),
        reason=reason,
        created_by=created_by,
    )
    db.add(membership)
    db.flush()
    return membership, True
