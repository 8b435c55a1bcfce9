"""SQLAlchemy ORM models for cross-tenant transfer cases."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import ForeignKey, Index, String, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base

PENDING_TRANSFER_PREDICATE = "status IN ('requested', 'approved') AND deleted_at IS NULL"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransferCase(Base):
    """
    One request to move a student from one tenant/school to another.

    Ownership is split by field: the source tenant writes the request
    fields, the destination tenant writes approval and completion fields.
    The partial unique index allows a single pending case per student.
    """

    __tablename__ = "transfer_cases"
    __table_args__ = (
        Index("idx_transfer_cases_from_tenant", "from_tenant_id", "requested_at"),
        Index("idx_transfer_cases_to_tenant", "to_tenant_id", "requested_at"),
        Index(
            "uq_transfer_cases_student_pending",
            "student_id",
            unique=True,
            postgresql_where=text(PENDING_TRANSFER_PREDICATE),
            sqlite_where=text(PENDING_TRANSFER_PREDICATE),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )

    # Source side
    from_tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    from_school_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("schools.id", ondelete="SET NULL"), nullable=True
    )
    from_enrollment_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("enrollments.id", ondelete="SET NULL"), nullable=True
    )

    # Destination side
    to_tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    to_school_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("schools.id", ondelete="SET NULL"), nullable=True
    )
    to_enrollment_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("enrollments.id", ondelete="SET NULL"), nullable=True
    )

    status: Mapped[str] = mapped_column(
        String(20), server_default=text("'requested'"), default="requested", nullable=False
    )  # TransferStatus
    requested_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Sealed source history (NULL when snapshot generation failed)
    snapshot_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", default=dict, nullable=False)

    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    deleted_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
