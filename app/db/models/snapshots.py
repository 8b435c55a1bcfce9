"""SQLAlchemy ORM models for academic record snapshots."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class AcademicRecordSnapshot(Base):
    """
    Immutable, versioned, hashed capture of a student's academic data.

    Integrity:
    - payload_hash is computed once from the canonical payload and never updated
    - hash_algo/hash_encoding are stored so verification survives algorithm changes
    - uq_snapshot_version guards concurrent version assignment
    """

    __tablename__ = "academic_record_snapshots"
    __table_args__ = (
        Index(
            "uq_snapshot_version",
            "tenant_id",
            "student_id",
            "kind",
            "version",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
        Index("idx_snapshots_tenant_student_kind_status", "tenant_id", "student_id", "kind", "status"),
        Index("idx_snapshots_transfer", "source_transfer_case_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    school_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("schools.id", ondelete="SET NULL"), nullable=True
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(30), nullable=False)  # SnapshotKind
    academic_year_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("academic_years.id", ondelete="SET NULL"), nullable=True
    )
    as_of_at: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    is_final: Mapped[bool] = mapped_column(
        Boolean, server_default=text("false"), default=False, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), server_default=text("'active'"), default="active", nullable=False
    )  # SnapshotStatus

    # Payload + integrity
    payload: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    payload_schema_version: Mapped[int] = mapped_column(Integer, nullable=False)
    payload_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    hash_algo: Mapped[str] = mapped_column(String(20), nullable=False)
    hash_encoding: Mapped[str] = mapped_column(String(20), nullable=False)

    # Provenance
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)  # SnapshotSourceType
    source_transfer_case_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("transfer_cases.id", ondelete="SET NULL"), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    finalized_at: Mapped[datetime | None] = mapped_column(nullable=True)
    finalized_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    revoked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    revoked_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    revoke_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
