"""Service layer modules."""

from app.services.directory_service import (
    create_tenant,
    get_school_by_id,
    get_student_with_person,
    get_tenant_by_id,
    get_tenant_by_slug,
)

# Import service modules (not individual functions) for cleaner access
from app.services import enrollment_event_service
from app.services import enrollment_service
from app.services import snapshot_service
from app.services import transfer_service
from app.services import student_timeline_service

__all__ = [
    # Directory service
    "create_tenant",
    "get_tenant_by_id",
    "get_tenant_by_slug",
    "get_school_by_id",
    "get_student_with_person",
    # Service modules
    "enrollment_event_service",
    "enrollment_service",
    "snapshot_service",
    "transfer_service",
    "student_timeline_service",
]
