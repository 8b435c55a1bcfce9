"""Pydantic schemas for API request/response models."""

from app.schemas.auth import Actor, TenantContext
from app.schemas.enrollment_event import EnrollmentEventRead
from app.schemas.snapshot import (
    SnapshotFilters,
    SnapshotFinalize,
    SnapshotGenerate,
    SnapshotListItem,
    SnapshotListResponse,
    SnapshotRead,
    SnapshotRevoke,
    SnapshotVerification,
)
from app.schemas.timeline import TimelineEvent, TimelineEventType, TimelineFilters, TimelineSummary
from app.schemas.transfer import (
    TransferActionResponse,
    TransferApprove,
    TransferCancel,
    TransferComplete,
    TransferCreate,
    TransferFilters,
    TransferListResponse,
    TransferRead,
    TransferReject,
)

__all__ = [
    # Request context
    "Actor",
    "TenantContext",
    # Enrollment ledger
    "EnrollmentEventRead",
    # Snapshots
    "SnapshotFilters",
    "SnapshotFinalize",
    "SnapshotGenerate",
    "SnapshotListItem",
    "SnapshotListResponse",
    "SnapshotRead",
    "SnapshotRevoke",
    "SnapshotVerification",
    # Timeline
    "TimelineEvent",
    "TimelineEventType",
    "TimelineFilters",
    "TimelineSummary",
    # Transfers
    "TransferActionResponse",
    "TransferApprove",
    "TransferCancel",
    "TransferComplete",
    "TransferCreate",
    "TransferFilters",
    "TransferListResponse",
    "TransferRead",
    "TransferReject",
]
