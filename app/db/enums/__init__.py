"""Enum definitions for application constants."""

from app.db.enums.enrollments import (
    AcademicYearStatus,
    ActorType,
    EnrollmentEventType,
    EnrollmentStatus,
    ProfileStatus,
)
from app.db.enums.snapshots import SnapshotKind, SnapshotSourceType, SnapshotStatus
from app.db.enums.transfers import TransferDirection, TransferStatus

__all__ = [
    "AcademicYearStatus",
    "ActorType",
    "EnrollmentEventType",
    "EnrollmentStatus",
    "ProfileStatus",
    "SnapshotKind",
    "SnapshotSourceType",
    "SnapshotStatus",
    "TransferDirection",
    "TransferStatus",
]
