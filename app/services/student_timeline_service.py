"""Student timeline - history rebuilt from append-only sources.

Three sources feed the timeline: enrollment ledger rows of the tenant's
enrollments, the stamps on transfer cases the tenant is a party to, and the
entered_at / left_at dates on the tenant's school profiles.
Enrollment status columns are never consulted, so the history does not
drift when enrollments change later.
"""

from collections import Counter
from datetime import date, datetime, time, timezone
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.db.enums import ActorType, EnrollmentEventType
from app.db.models import Enrollment, EnrollmentEvent, School, StudentSchoolProfile, TransferCase
from app.schemas.timeline import TimelineEvent, TimelineEventType, TimelineFilters, TimelineSummary
from app.services import directory_service
from app.services.errors import NotFoundError

LEDGER_EVENT_TYPES: dict[str, TimelineEventType] = {
    EnrollmentEventType.CREATED.value: TimelineEventType.ENROLLMENT_CREATED,
    EnrollmentEventType.STATUS_CHANGED.value: TimelineEventType.ENROLLMENT_STATUS_CHANGED,
    EnrollmentEventType.CLASS_MEMBERSHIP_ADDED.value: TimelineEventType.CLASS_ASSIGNED,
    EnrollmentEventType.CLASS_MEMBERSHIP_CLOSED.value: TimelineEventType.CLASS_CHANGED,
    EnrollmentEventType.TRANSFER_REQUESTED.value: TimelineEventType.TRANSFER_REQUESTED,
    EnrollmentEventType.TRANSFER_COMPLETED.value: TimelineEventType.TRANSFER_COMPLETED,
    EnrollmentEventType.LEFT_SCHOOL.value: TimelineEventType.SCHOOL_LEFT,
}

LEDGER_DESCRIPTIONS: dict[str, str] = {
    EnrollmentEventType.CREATED.value: "Enrollment created",
    EnrollmentEventType.CLASS_MEMBERSHIP_ADDED.value: "Class assigned",
    EnrollmentEventType.CLASS_MEMBERSHIP_CLOSED.value: "Class changed",
    EnrollmentEventType.TRANSFER_REQUESTED.value: "Transfer requested",
    EnrollmentEventType.TRANSFER_COMPLETED.value: "Transfer completed",
    EnrollmentEventType.LEFT_SCHOOL.value: "Left school",
}


def _as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_timeline(
    db: Session,
    tenant_id: UUID,
    student_id: UUID,
    filters: TimelineFilters | None = None,
) -> list[TimelineEvent]:
    """
    Get the student's timeline in the tenant, newest first.

    Raises NotFoundError if the student has no profile in the tenant.
    """
    filters = filters or TimelineFilters()
    if not directory_service.get_tenant_profile(db, tenant_id, student_id, active_only=False):
        raise NotFoundError("Student not found in this tenant", student_id=student_id)

    events = (
        _ledger_events(db, tenant_id, student_id, filters)
        + _transfer_events(db, tenant_id, student_id, filters)
        + _school_profile_events(db, tenant_id, student_id, filters)
    )

    if filters.from_date:
        from_date = _as_utc(filters.from_date)
        events = [e for e in events if e.occurred_at >= from_date]
    if filters.to_date:
        to_date = _as_utc(filters.to_date)
        events = [e for e in events if e.occurred_at <= to_date]
    if filters.event_types:
        wanted = set(filters.event_types)
        events = [e for e in events if e.event_type in wanted]

    # Stable sort keeps ledger insertion order for equal timestamps
    events.sort(key=lambda e: e.occurred_at, reverse=True)

    if filters.limit:
        events = events[: filters.limit]
    return events


def get_timeline_summary(db: Session, tenant_id: UUID, student_id: UUID) -> TimelineSummary:
    """Counts by type and school plus the first and last event dates."""
    events = get_timeline(db, tenant_id, student_id)

    by_type = Counter(e.event_type.value for e in events)
    by_school = Counter(
        e.school_name or str(e.school_id) for e in events if e.school_id
    )

    return TimelineSummary(
        total_events=len(events),
        by_type=dict(by_type),
        by_school=dict(by_school),
        first_event_date=events[-1].occurred_at if events else None,
        last_event_date=events[0].occurred_at if events else None,
    )


def _ledger_events(
    db: Session,
    tenant_id: UUID,
    student_id: UUID,
    filters: TimelineFilters,
) -> list[TimelineEvent]:
    query = (
        select(EnrollmentEvent, Enrollment.school_id, School.name)
        .join(Enrollment, Enrollment.id == EnrollmentEvent.enrollment_id)
        .outerjoin(School, School.id == Enrollment.school_id)
        .where(
            EnrollmentEvent.tenant_id == tenant_id,
            Enrollment.tenant_id == tenant_id,
            Enrollment.student_id == student_id,
            Enrollment.deleted_at.is_(None),
        )
        .order_by(EnrollmentEvent.effective_at.desc(), EnrollmentEvent.id.desc())
    )
    if filters.school_id:
        query = query.where(Enrollment.school_id == filters.school_id)

    events = []
    for event, school_id, school_name in db.execute(query).all():
        event_type = LEDGER_EVENT_TYPES.get(event.event_type)
        if event_type is None:
            continue
        metadata = event.metadata_ or {}
        if event.event_type == EnrollmentEventType.STATUS_CHANGED.value:
            description = f"Status changed to {metadata.get('to_status') or 'unknown'}"
        else:
            description = LEDGER_DESCRIPTIONS[event.event_type]
        events.append(
            TimelineEvent(
                id=str(event.id),
                event_type=event_type,
                occurred_at=_as_utc(event.effective_at),
                actor_type=event.actor_type,
                actor_id=event.actor_id,
                description=description,
                school_id=school_id,
                school_name=school_name,
                metadata=metadata,
                source_table="enrollment_events",
                source_id=str(event.id),
            )
        )
    return events


def _transfer_events(
    db: Session,
    tenant_id: UUID,
    student_id: UUID,
    filters: TimelineFilters,
) -> list[TimelineEvent]:
    transfers = db.execute(
        select(TransferCase)
        .where(
            TransferCase.student_id == student_id,
            or_(
                TransferCase.from_tenant_id == tenant_id,
                TransferCase.to_tenant_id == tenant_id,
            ),
            TransferCase.deleted_at.is_(None),
        )
        .order_by(TransferCase.requested_at.desc())
    ).scalars().all()

    events: list[TimelineEvent] = []
    for transfer in transfers:
        events.extend(_map_transfer(transfer, tenant_id))

    if filters.school_id:
        events = [e for e in events if e.school_id == filters.school_id]
    return events


def _map_transfer(transfer: TransferCase, tenant_id: UUID) -> list[TimelineEvent]:
    """One event per stamp set on the case."""
    outgoing = transfer.from_tenant_id == tenant_id
    metadata = transfer.metadata_ or {}
    source = {"source_table": "transfer_cases", "source_id": str(transfer.id)}

    events = [
        TimelineEvent(
            id=f"{transfer.id}_requested",
            event_type=TimelineEventType.TRANSFER_REQUESTED,
            occurred_at=_as_utc(transfer.requested_at),
            actor_type=ActorType.USER.value if transfer.created_by else ActorType.SYSTEM.value,
            actor_id=transfer.created_by,
            description="Transfer requested (outgoing)" if outgoing else "Transfer received (incoming)",
            school_id=transfer.from_school_id if outgoing else transfer.to_school_id,
            metadata={
                "transfer_id": str(transfer.id),
                "from_tenant_id": str(transfer.from_tenant_id),
                "to_tenant_id": str(transfer.to_tenant_id),
                "direction": "outgoing" if outgoing else "incoming",
            },
            **source,
        )
    ]
    if transfer.approved_at:
        events.append(
            TimelineEvent(
                id=f"{transfer.id}_approved",
                event_type=TimelineEventType.TRANSFER_APPROVED,
                occurred_at=_as_utc(transfer.approved_at),
                description="Transfer approved",
                school_id=transfer.to_school_id,
                metadata={"transfer_id": str(transfer.id)},
                **source,
            )
        )
    if transfer.rejected_at:
        events.append(
            TimelineEvent(
                id=f"{transfer.id}_rejected",
                event_type=TimelineEventType.TRANSFER_REJECTED,
                occurred_at=_as_utc(transfer.rejected_at),
                description="Transfer rejected",
                school_id=transfer.to_school_id,
                metadata={"transfer_id": str(transfer.id), "reason": metadata.get("rejection_reason")},
                **source,
            )
        )
    if transfer.cancelled_at:
        events.append(
            TimelineEvent(
                id=f"{transfer.id}_cancelled",
                event_type=TimelineEventType.TRANSFER_CANCELLED,
                occurred_at=_as_utc(transfer.cancelled_at),
                description="Transfer cancelled",
                metadata={"transfer_id": str(transfer.id), "reason": metadata.get("cancellation_reason")},
                **source,
            )
        )
    if transfer.completed_at:
        events.append(
            TimelineEvent(
                id=f"{transfer.id}_completed",
                event_type=TimelineEventType.TRANSFER_COMPLETED,
                occurred_at=_as_utc(transfer.completed_at),
                description="Transfer completed",
                school_id=transfer.to_school_id,
                metadata={
                    "transfer_id": str(transfer.id),
                    "to_enrollment_id": str(transfer.to_enrollment_id) if transfer.to_enrollment_id else None,
                },
                **source,
            )
        )
    return events


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _school_profile_events(
    db: Session,
    tenant_id: UUID,
    student_id: UUID,
    filters: TimelineFilters,
) -> list[TimelineEvent]:
    """Entered and left events from the tenant's school profiles, dated at midnight UTC."""
    query = (
        select(StudentSchoolProfile, School.name)
        .outerjoin(School, School.id == StudentSchoolProfile.school_id)
        .where(
            StudentSchoolProfile.tenant_id == tenant_id,
            StudentSchoolProfile.student_id == student_id,
            StudentSchoolProfile.deleted_at.is_(None),
        )
    )
    if filters.school_id:
        query = query.where(StudentSchoolProfile.school_id == filters.school_id)

    events: list[TimelineEvent] = []
    for profile, school_name in db.execute(query).all():
        source = {
            "school_id": profile.school_id,
            "school_name": school_name,
            "source_table": "student_school_profiles",
            "source_id": str(profile.id),
        }
        if profile.entered_at:
            events.append(
                TimelineEvent(
                    id=f"{profile.id}_entered",
                    event_type=TimelineEventType.SCHOOL_ENTERED,
                    occurred_at=_day_start(profile.entered_at),
                    actor_type=ActorType.SYSTEM.value,
                    actor_id=profile.created_by,
                    description=f"Entered {school_name or 'school'}",
                    metadata={"school_registration_code": profile.school_registration_code},
                    **source,
                )
            )
        if profile.left_at:
            events.append(
                TimelineEvent(
                    id=f"{profile.id}_left",
                    event_type=TimelineEventType.SCHOOL_LEFT,
                    occurred_at=_day_start(profile.left_at),
                    actor_type=ActorType.SYSTEM.value,
                    actor_id=profile.updated_by,
                    description=f"Left {school_name or 'school'}",
                    **source,
                )
            )
    return events
