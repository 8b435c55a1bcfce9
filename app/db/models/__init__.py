"""SQLAlchemy ORM models."""

from app.db.models.academics import AssessmentScore, AttendanceRecord, StudentSubjectResult
from app.db.models.directory import (
    AcademicYear,
    ClassGroup,
    Person,
    School,
    Student,
    StudentSchoolProfile,
    StudentTenantProfile,
    Tenant,
)
from app.db.models.enrollments import Enrollment, EnrollmentClassMembership, EnrollmentEvent
from app.db.models.snapshots import AcademicRecordSnapshot
from app.db.models.transfers import TransferCase

__all__ = [
    "AcademicRecordSnapshot",
    "AcademicYear",
    "AssessmentScore",
    "AttendanceRecord",
    "ClassGroup",
    "Enrollment",
    "EnrollmentClassMembership",
    "EnrollmentEvent",
    "Person",
    "School",
    "Student",
    "StudentSchoolProfile",
    "StudentSubjectResult",
    "StudentTenantProfile",
    "Tenant",
    "TransferCase",
]
