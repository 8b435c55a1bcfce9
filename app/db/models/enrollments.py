"""SQLAlchemy ORM models for enrollments and the enrollment event ledger."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import Date, ForeignKey, Index, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.types import LedgerKey


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Enrollment(Base):
    """A student's enrollment in one school for one academic year."""

    __tablename__ = "enrollments"
    __table_args__ = (
        Index("idx_enrollments_student_school_status", "student_id", "school_id", "status"),
        Index("idx_enrollments_tenant", "tenant_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    school_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False
    )
    academic_year_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("academic_years.id", ondelete="SET NULL"), nullable=True
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    enrolled_at: Mapped[date] = mapped_column(Date, nullable=False)
    left_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Free-form origin data, e.g. {"transfer_id": ...}
    context: Mapped[dict[str, Any]] = mapped_column(default=dict, nullable=False)

    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
    updated_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    academic_year = relationship("AcademicYear", lazy="joined")


class EnrollmentClassMembership(Base):
    """
    Class group membership for an enrollment over a validity window.

    An open membership has valid_to = NULL.
    """

    __tablename__ = "enrollment_class_memberships"
    __table_args__ = (Index("idx_class_memberships_enrollment", "enrollment_id", "valid_to"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    enrollment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False
    )
    class_group_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("class_groups.id", ondelete="CASCADE"), nullable=False
    )
    valid_from: Mapped[date] = mapped_column(Date, nullable=False)
    valid_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    class_group = relationship("ClassGroup", lazy="joined")


class EnrollmentEvent(Base):
    """
    Append-only fact about one enrollment.

    Rows are never updated or deleted. The integer id increases with every
    insert and breaks effective_at ties when rebuilding a timeline.
    """

    __tablename__ = "enrollment_events"
    __table_args__ = (
        Index("idx_enrollment_events_enrollment_effective", "enrollment_id", "effective_at"),
        Index("idx_enrollment_events_tenant", "tenant_id"),
    )

    id: Mapped[int] = mapped_column(LedgerKey, primary_key=True, autoincrement=True)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    enrollment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)  # EnrollmentEventType
    effective_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    actor_type: Mapped[str] = mapped_column(String(20), nullable=False)  # ActorType
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    from_class_group_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    to_class_group_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
