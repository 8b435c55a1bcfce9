"""Transfer case enums."""

from enum import Enum


class TransferStatus(str, Enum):
    """
    Transfer case lifecycle.

    requested → approved → completed (happy path)
    requested → rejected
    requested | approved → cancelled
    """

    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def pending(cls) -> tuple["TransferStatus", ...]:
        """Statuses that block a new transfer for the same student."""
        return (cls.REQUESTED, cls.APPROVED)


class TransferDirection(str, Enum):
    """List filter relative to the acting tenant."""

    INCOMING = "incoming"
    OUTGOING = "outgoing"
