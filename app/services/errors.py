"""Shared error taxonomy for the records core.

Every business-rule violation raised by the transfer, snapshot and ledger
services is one of these classes. Each carries a ``context`` dict with the
identifiers a caller needs to explain the failure (entity id, current status,
required status, tenant ids) without re-querying.
"""

from typing import Any


class RecordsServiceError(Exception):
    """Base exception for records service errors."""

    code = "records_error"

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context = {key: _stringify(value) for key, value in context.items() if value is not None}
        super().__init__(message)


class ValidationError(RecordsServiceError):
    """Missing or invalid precondition."""

    code = "validation_error"


class NotFoundError(RecordsServiceError):
    """Entity absent, soft-deleted, or not visible to the acting tenant."""

    code = "not_found"


class ConflictError(RecordsServiceError):
    """Uniqueness or state violation."""

    code = "conflict"


class ForbiddenError(RecordsServiceError):
    """Acting tenant lacks authority for the requested transition."""

    code = "forbidden"


class StoreError(RecordsServiceError):
    """Underlying persistence failure."""

    code = "store_error"


def _stringify(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_stringify(v) for v in value]
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)
