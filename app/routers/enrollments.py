"""Router for the enrollment event ledger (read only)."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_db, get_tenant_context
from app.schemas.auth import TenantContext
from app.schemas.enrollment_event import EnrollmentEventRead
from app.services import enrollment_event_service


router = APIRouter(prefix="/enrollments", tags=["Enrollments"])


@router.get("/{enrollment_id}/events", response_model=list[EnrollmentEventRead])
def list_enrollment_events(
    enrollment_id: UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    """List ledger events for an enrollment, newest first."""
    return enrollment_event_service.list_events(db, ctx.tenant_id, enrollment_id)
