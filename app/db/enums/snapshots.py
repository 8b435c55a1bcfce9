"""Academic record snapshot enums."""

from enum import Enum


class SnapshotKind(str, Enum):
    ACADEMIC_YEAR = "academic_year"
    AS_OF = "as_of"
    FULL_HISTORY = "full_history"
    TRANSFER_PACKET = "transfer_packet"
    CUSTOM = "custom"


class SnapshotStatus(str, Enum):
    """
    Snapshot status.

    At most one snapshot per (tenant, student, kind) stays ACTIVE once one of
    them is finalized. REVOKED is terminal.
    """

    ACTIVE = "active"
    SUPERSEDED = "superseded"
    REVOKED = "revoked"


class SnapshotSourceType(str, Enum):
    SYSTEM = "system"
    MANUAL = "manual"
    YEAR_CLOSE = "year_close"
    TRANSFER = "transfer"
