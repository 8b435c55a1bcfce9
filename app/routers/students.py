"""Router for student history views."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.deps import get_db, get_tenant_context
from app.schemas.auth import TenantContext
from app.schemas.timeline import TimelineEvent, TimelineEventType, TimelineFilters, TimelineSummary
from app.services import student_timeline_service


router = APIRouter(prefix="/students", tags=["Students"])


@router.get("/{student_id}/timeline", response_model=list[TimelineEvent])
def get_timeline(
    student_id: UUID,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    event_types: list[TimelineEventType] | None = Query(None),
    school_id: UUID | None = None,
    limit: int | None = Query(None, ge=1, le=100),
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    """
    Student history in the acting tenant, newest first.

    Built from enrollment ledger events and transfer case stamps.
    """
    filters = TimelineFilters(
        from_date=from_date,
        to_date=to_date,
        event_types=event_types,
        school_id=school_id,
        limit=limit,
    )
    return student_timeline_service.get_timeline(db, ctx.tenant_id, student_id, filters)


@router.get("/{student_id}/timeline/summary", response_model=TimelineSummary)
def get_timeline_summary(
    student_id: UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    return student_timeline_service.get_timeline_summary(db, ctx.tenant_id, student_id)
