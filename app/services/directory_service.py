"""Read-side lookups against collaborator tables (tenants, schools, students, years)."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.enums import ProfileStatus
from app.db.models import AcademicYear, ClassGroup, School, Student, StudentTenantProfile, Tenant
from app.services.errors import ConflictError


def get_tenant_by_id(db: Session, tenant_id: UUID) -> Tenant | None:
    return db.get(Tenant, tenant_id)


def get_tenant_by_slug(db: Session, slug: str) -> Tenant | None:
    """Get tenant by slug."""
    return db.query(Tenant).filter(Tenant.slug == slug.lower()).first()


def create_tenant(db: Session, name: str, slug: str) -> Tenant:
    """
    Create a new tenant.

    Raises:
        ConflictError: If slug already exists
    """
    tenant = Tenant(name=name, slug=slug.lower())
    db.add(tenant)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Tenant slug already exists", slug=slug.lower()) from exc
    db.refresh(tenant)
    return tenant


def get_school_by_id(db: Session, school_id: UUID) -> School | None:
    """Get a school (not soft-deleted) by ID."""
    return db.execute(
        select(School).where(School.id == school_id, School.deleted_at.is_(None))
    ).scalar_one_or_none()


def get_student_with_person(db: Session, student_id: UUID) -> Student | None:
    """Get a student with its person loaded. Soft-deleted students are not returned."""
    return db.execute(
        select(Student).where(Student.id == student_id, Student.deleted_at.is_(None))
    ).unique().scalar_one_or_none()


def get_tenant_profile(
    db: Session,
    tenant_id: UUID,
    student_id: UUID,
    active_only: bool = True,
) -> StudentTenantProfile | None:
    """Get the student's profile inside a tenant."""
    query = select(StudentTenantProfile).where(
        StudentTenantProfile.tenant_id == tenant_id,
        StudentTenantProfile.student_id == student_id,
        StudentTenantProfile.deleted_at.is_(None),
    )
    if active_only:
        query = query.where(StudentTenantProfile.status == ProfileStatus.ACTIVE.value)
    return db.execute(query.limit(1)).scalar_one_or_none()


def find_active_year(db: Session, school_id: UUID) -> AcademicYear | None:
    """
    Find the school's current academic year.

    If several years are marked active the most recent start date wins.
    """
    return db.execute(
        select(AcademicYear)
        .where(
            AcademicYear.school_id == school_id,
            AcademicYear.status == settings.TRANSFER_DEFAULT_ACADEMIC_YEAR_STATUS,
            AcademicYear.deleted_at.is_(None),
        )
        .order_by(AcademicYear.start_date.desc())
        .limit(1)
    ).scalar_one_or_none()


def get_academic_year(db: Session, academic_year_id: UUID, school_id: UUID | None = None) -> AcademicYear | None:
    query = select(AcademicYear).where(
        AcademicYear.id == academic_year_id,
        AcademicYear.deleted_at.is_(None),
    )
    if school_id:
        query = query.where(AcademicYear.school_id == school_id)
    return db.execute(query).scalar_one_or_none()


def get_class_group(db: Session, class_group_id: UUID, school_id: UUID | None = None) -> ClassGroup | None:
    query = select(ClassGroup).where(
        ClassGroup.id == class_group_id,
        ClassGroup.deleted_at.is_(None),
    )
    if school_id:
        query = query.where(ClassGroup.school_id == school_id)
    return db.execute(query).scalar_one_or_none()
