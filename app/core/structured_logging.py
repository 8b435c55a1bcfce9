"""Structured logging helpers (tenant-scoped, no student PII)."""

import logging
from typing import Any

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the API process."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def build_log_context(
    *,
    tenant_id: str | None = None,
    user_id: str | None = None,
    transfer_id: str | None = None,
    snapshot_id: str | None = None,
    enrollment_id: str | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict with only the identifiers that are set.

    Values are coerced to ``str`` so UUIDs can be passed directly.
    """
    fields = {
        "tenant_id": tenant_id,
        "user_id": user_id,
        "transfer_id": transfer_id,
        "snapshot_id": snapshot_id,
        "enrollment_id": enrollment_id,
        "request_id": request_id,
        "route": route,
        "method": method,
    }
    return {key: str(value) for key, value in fields.items() if value}
