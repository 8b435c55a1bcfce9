"""Enrollment and enrollment ledger enums."""

from enum import Enum


class EnrollmentStatus(str, Enum):
    ACTIVE = "active"
    TRANSFERRED = "transferred"
    LEFT = "left"
    COMPLETED = "completed"


class EnrollmentEventType(str, Enum):
    """Append-only facts recorded against an enrollment."""

    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    CLASS_MEMBERSHIP_ADDED = "class_membership_added"
    CLASS_MEMBERSHIP_CLOSED = "class_membership_closed"
    TRANSFER_REQUESTED = "transfer_requested"
    TRANSFER_COMPLETED = "transfer_completed"
    LEFT_SCHOOL = "left_school"


class ActorType(str, Enum):
    USER = "user"
    AI = "ai"
    SYSTEM = "system"


class ProfileStatus(str, Enum):
    """Status of student tenant/school profiles."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class AcademicYearStatus(str, Enum):
    PLANNED = "planned"
    ACTIVE = "active"
    CLOSED = "closed"
