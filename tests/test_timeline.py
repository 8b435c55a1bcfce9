"""Tests for the student timeline rebuilt from ledger rows, transfer stamps and school profiles."""

import uuid
from datetime import date, datetime, timedelta, timezone

import pytest

from app.schemas.auth import Actor
from app.schemas.timeline import TimelineEventType, TimelineFilters
from app.schemas.transfer import TransferApprove, TransferComplete, TransferCreate
from app.services import student_timeline_service, transfer_service
from app.services.errors import NotFoundError


def _transfer_and_complete(db, world):
    dest_actor = Actor.from_user(uuid.uuid4())
    transfer = transfer_service.create_transfer(
        db,
        world.source_tenant.id,
        TransferCreate(
            student_id=world.student.id,
            from_school_id=world.source_school.id,
            to_tenant_id=world.dest_tenant.id,
            to_school_id=world.dest_school.id,
        ),
        world.source_actor,
    ).transfer
    transfer_service.approve_transfer(db, transfer.id, world.dest_tenant.id, TransferApprove(), dest_actor)
    return transfer_service.complete_transfer(
        db,
        transfer.id,
        world.dest_tenant.id,
        TransferComplete(to_class_group_id=world.dest_class.id),
        dest_actor,
    ).transfer


def test_timeline_before_any_transfer(db, world):
    events = student_timeline_service.get_timeline(db, world.source_tenant.id, world.student.id)

    assert [e.event_type for e in events] == [
        TimelineEventType.ENROLLMENT_CREATED,
        TimelineEventType.SCHOOL_ENTERED,
    ]
    assert events[0].school_name == "North District School"
    assert events[0].source_table == "enrollment_events"


def test_source_timeline_after_transfer(db, world):
    _transfer_and_complete(db, world)

    events = student_timeline_service.get_timeline(db, world.source_tenant.id, world.student.id)
    types = [e.event_type for e in events]

    assert types.count(TimelineEventType.TRANSFER_REQUESTED) == 2
    assert types.count(TimelineEventType.TRANSFER_COMPLETED) == 2
    assert TimelineEventType.TRANSFER_APPROVED in types
    assert TimelineEventType.SCHOOL_LEFT in types
    assert types[-1] == TimelineEventType.SCHOOL_ENTERED
    assert all(a.occurred_at >= b.occurred_at for a, b in zip(events, events[1:]))

    outgoing = [e for e in events if e.id.endswith("_requested")]
    assert outgoing[0].description == "Transfer requested (outgoing)"
    assert outgoing[0].metadata["direction"] == "outgoing"


def test_destination_timeline_sees_only_its_rows(db, world):
    with pytest.raises(NotFoundError):
        student_timeline_service.get_timeline(db, world.dest_tenant.id, world.student.id)

    _transfer_and_complete(db, world)
    events = student_timeline_service.get_timeline(db, world.dest_tenant.id, world.student.id)

    assert {e.event_type for e in events} == {
        TimelineEventType.ENROLLMENT_CREATED,
        TimelineEventType.CLASS_ASSIGNED,
        TimelineEventType.SCHOOL_ENTERED,
        TimelineEventType.TRANSFER_REQUESTED,
        TimelineEventType.TRANSFER_APPROVED,
        TimelineEventType.TRANSFER_COMPLETED,
    }
    ledger_schools = {e.school_id for e in events if e.source_table == "enrollment_events"}
    assert ledger_schools == {world.dest_school.id}
    incoming = next(e for e in events if e.id.endswith("_requested"))
    assert incoming.description == "Transfer received (incoming)"


def test_timeline_filters(db, world):
    _transfer_and_complete(db, world)
    tenant_id = world.source_tenant.id

    approved = student_timeline_service.get_timeline(
        db, tenant_id, world.student.id, TimelineFilters(event_types=[TimelineEventType.TRANSFER_APPROVED])
    )
    limited = student_timeline_service.get_timeline(db, tenant_id, world.student.id, TimelineFilters(limit=2))
    future = student_timeline_service.get_timeline(
        db,
        tenant_id,
        world.student.id,
        TimelineFilters(from_date=datetime.now(timezone.utc) + timedelta(days=1)),
    )
    at_destination_school = student_timeline_service.get_timeline(
        db, tenant_id, world.student.id, TimelineFilters(school_id=world.dest_school.id)
    )

    assert [e.event_type for e in approved] == [TimelineEventType.TRANSFER_APPROVED]
    assert len(limited) == 2
    assert future == []
    assert {e.event_type for e in at_destination_school} == {
        TimelineEventType.TRANSFER_APPROVED,
        TimelineEventType.TRANSFER_COMPLETED,
    }


def test_timeline_summary(db, world):
    _transfer_and_complete(db, world)

    summary = student_timeline_service.get_timeline_summary(db, world.source_tenant.id, world.student.id)

    assert summary.total_events == 8
    assert summary.by_type == {
        "enrollment_created": 1,
        "school_entered": 1,
        "school_left": 1,
        "transfer_requested": 2,
        "transfer_approved": 1,
        "transfer_completed": 2,
    }
    assert summary.by_school["North District School"] == 5
    assert summary.first_event_date == datetime(2024, 2, 1, tzinfo=timezone.utc)
    assert summary.last_event_date >= summary.first_event_date


def test_school_profile_entered_and_left(db, world):
    _transfer_and_complete(db, world)
    profile_types = [TimelineEventType.SCHOOL_ENTERED, TimelineEventType.SCHOOL_LEFT]

    events = student_timeline_service.get_timeline(
        db, world.source_tenant.id, world.student.id, TimelineFilters(event_types=profile_types)
    )

    assert [e.event_type for e in events] == [TimelineEventType.SCHOOL_LEFT, TimelineEventType.SCHOOL_ENTERED]
    left, entered = events
    assert left.occurred_at.date() == date.today()
    assert left.description == "Left North District School"
    assert entered.occurred_at == datetime(2024, 2, 1, tzinfo=timezone.utc)
    assert entered.source_table == "student_school_profiles"
    assert entered.school_id == world.source_school.id
    assert entered.metadata == {"school_registration_code": "N-001"}
    assert left.source_id == entered.source_id

    elsewhere = student_timeline_service.get_timeline(
        db,
        world.source_tenant.id,
        world.student.id,
        TimelineFilters(event_types=profile_types, school_id=world.dest_school.id),
    )
    assert elsewhere == []


@pytest.mark.asyncio
async def test_timeline_endpoint(client, world, headers_for):
    response = await client.get(
        f"/students/{world.student.id}/timeline",
        params={"event_types": ["enrollment_created"]},
        headers=headers_for(world.source_tenant.id),
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert len(body) == 1
    assert body[0]["event_type"] == "enrollment_created"


@pytest.mark.asyncio
async def test_timeline_summary_endpoint_unknown_student(client, world, headers_for):
    response = await client.get(
        f"/students/{uuid.uuid4()}/timeline/summary",
        headers=headers_for(world.source_tenant.id),
    )

    assert response.status_code == 404
