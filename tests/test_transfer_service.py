"""Tests for the transfer case state machine and completion steps."""

import uuid
from datetime import date

import pytest
from sqlalchemy import select

from app.db.enums import EnrollmentEventType, SnapshotKind, SnapshotSourceType, TransferDirection, TransferStatus
from app.db.models import (
    AcademicRecordSnapshot,
    AcademicYear,
    Enrollment,
    EnrollmentClassMembership,
    EnrollmentEvent,
    StudentSchoolProfile,
    Tenant,
)
from app.schemas.auth import Actor
from app.schemas.transfer import (
    TransferApprove,
    TransferCancel,
    TransferComplete,
    TransferCreate,
    TransferFilters,
    TransferReject,
)
from app.services import (
    directory_service,
    enrollment_event_service,
    enrollment_service,
    snapshot_service,
    transfer_service,
)
from app.services.errors import ConflictError, ForbiddenError, NotFoundError, StoreError, ValidationError
from app.utils.pagination import PaginationParams


DEST_ACTOR = Actor.from_user(uuid.UUID("00000000-0000-4000-8000-000000000002"))


def _request(db, world, **overrides):
    fields = {
        "student_id": world.student.id,
        "from_school_id": world.source_school.id,
        "to_tenant_id": world.dest_tenant.id,
        "to_school_id": world.dest_school.id,
    }
    fields.update(overrides)
    result = transfer_service.create_transfer(
        db, world.source_tenant.id, TransferCreate(**fields), world.source_actor
    )
    return result.transfer


def _approved(db, world, **overrides):
    transfer = _request(db, world, **overrides)
    return transfer_service.approve_transfer(
        db, transfer.id, world.dest_tenant.id, TransferApprove(), DEST_ACTOR
    )


def _complete(db, world, transfer, **fields):
    return transfer_service.complete_transfer(
        db, transfer.id, world.dest_tenant.id, TransferComplete(**fields), DEST_ACTOR
    )


def _event_types(db, tenant_id, enrollment_id):
    return [e.event_type for e in enrollment_event_service.list_events(db, tenant_id, enrollment_id)]


# =============================================================================
# Create
# =============================================================================

def test_create_transfer_records_request(db, world):
    result = transfer_service.create_transfer(
        db,
        world.source_tenant.id,
        TransferCreate(
            student_id=world.student.id,
            from_school_id=world.source_school.id,
            to_tenant_id=world.dest_tenant.id,
            to_school_id=world.dest_school.id,
            notes="Family moving south",
            metadata={"requested_via": "office"},
        ),
        world.source_actor,
    )
    transfer = result.transfer

    assert result.warnings == []
    assert transfer.status == TransferStatus.REQUESTED.value
    assert transfer.from_enrollment_id == world.enrollment.id
    assert transfer.requested_at is not None
    assert transfer.created_by == world.user_id
    assert transfer.metadata_ == {"notes": "Family moving south", "requested_via": "office"}
    assert _event_types(db, world.source_tenant.id, world.enrollment.id)[0] == "transfer_requested"


def test_create_transfer_event_failure_is_warning(db, world, monkeypatch):
    def fail(*args, **kwargs):
        raise StoreError("Failed to append enrollment event")

    monkeypatch.setattr(enrollment_event_service, "append_event", fail)

    result = transfer_service.create_transfer(
        db,
        world.source_tenant.id,
        TransferCreate(
            student_id=world.student.id,
            from_school_id=world.source_school.id,
            to_tenant_id=world.dest_tenant.id,
        ),
        world.source_actor,
    )

    assert result.transfer.status == TransferStatus.REQUESTED.value
    assert len(result.warnings) == 1


def test_only_one_pending_transfer_per_student(db, world):
    _request(db, world)

    with pytest.raises(ConflictError):
        _request(db, world)


def test_pending_index_catches_concurrent_request(db, world, monkeypatch):
    first = _request(db, world)
    # Both requests pass the read check; the partial unique index decides
    monkeypatch.setattr(transfer_service, "get_pending_for_student", lambda db, student_id: None)

    with pytest.raises(ConflictError) as exc_info:
        _request(db, world)

    assert exc_info.value.message == "Student already has a pending transfer"
    monkeypatch.undo()
    assert transfer_service.get_pending_for_student(db, world.student.id).id == first.id


def test_approved_transfer_still_blocks_new_request(db, world):
    _approved(db, world)

    with pytest.raises(ConflictError):
        _request(db, world, from_school_id=None)


def test_rejected_transfer_frees_student(db, world):
    transfer = _request(db, world)
    transfer_service.reject_transfer(
        db, transfer.id, world.dest_tenant.id, TransferReject(reason="No seats"), DEST_ACTOR
    )

    second = _request(db, world)

    assert second.id != transfer.id


def test_create_requires_student_in_tenant(db, world):
    with pytest.raises(ValidationError):
        transfer_service.create_transfer(
            db,
            world.dest_tenant.id,
            TransferCreate(student_id=world.student.id, to_tenant_id=world.source_tenant.id),
            Actor(),
        )


def test_create_requires_active_source_enrollment(db, world):
    with pytest.raises(ValidationError):
        _request(db, world, from_school_id=world.dest_school.id)


def test_create_rejects_unknown_destination_tenant(db, world):
    with pytest.raises(ValidationError):
        _request(db, world, to_tenant_id=uuid.uuid4(), to_school_id=None)


def test_create_rejects_school_outside_destination_tenant(db, world):
    with pytest.raises(ValidationError):
        _request(db, world, to_school_id=world.source_school.id)


# =============================================================================
# Decisions
# =============================================================================

def test_approve_by_destination(db, world):
    transfer = _request(db, world)

    approved = transfer_service.approve_transfer(
        db, transfer.id, world.dest_tenant.id, TransferApprove(notes="Seat reserved"), DEST_ACTOR
    )

    assert approved.status == TransferStatus.APPROVED.value
    assert approved.approved_at is not None
    assert approved.metadata_["approval_notes"] == "Seat reserved"


def test_source_cannot_approve(db, world):
    transfer = _request(db, world)

    with pytest.raises(ForbiddenError):
        transfer_service.approve_transfer(
            db, transfer.id, world.source_tenant.id, TransferApprove(), world.source_actor
        )


def test_approve_twice_reports_status(db, world):
    transfer = _approved(db, world)

    with pytest.raises(ConflictError) as exc_info:
        transfer_service.approve_transfer(db, transfer.id, world.dest_tenant.id, TransferApprove(), DEST_ACTOR)

    assert exc_info.value.context["current_status"] == "approved"
    assert exc_info.value.context["required_status"] == ["requested"]


def test_reject_approved_is_conflict(db, world):
    transfer = _approved(db, world)

    with pytest.raises(ConflictError):
        transfer_service.reject_transfer(
            db, transfer.id, world.dest_tenant.id, TransferReject(reason="Too late"), DEST_ACTOR
        )


def test_reject_records_reason(db, world):
    transfer = _request(db, world)

    rejected = transfer_service.reject_transfer(
        db, transfer.id, world.dest_tenant.id, TransferReject(reason="No seats"), DEST_ACTOR
    )

    assert rejected.status == TransferStatus.REJECTED.value
    assert rejected.rejected_at is not None
    assert rejected.metadata_["rejection_reason"] == "No seats"


@pytest.mark.parametrize("side", ["source", "dest"])
def test_either_side_can_cancel(db, world, side):
    transfer = _approved(db, world)
    tenant_id = world.source_tenant.id if side == "source" else world.dest_tenant.id

    cancelled = transfer_service.cancel_transfer(
        db, transfer.id, tenant_id, TransferCancel(reason="Family stayed"), Actor()
    )

    assert cancelled.status == TransferStatus.CANCELLED.value
    assert cancelled.cancelled_at is not None
    assert cancelled.metadata_["cancellation_reason"] == "Family stayed"
    assert cancelled.metadata_["cancelled_by_tenant"] == str(tenant_id)


def test_unrelated_tenant_cannot_see_transfer(db, world):
    outsider = Tenant(id=uuid.uuid4(), name="East District", slug="east")
    db.add(outsider)
    db.flush()
    transfer = _request(db, world)

    with pytest.raises(NotFoundError):
        transfer_service.cancel_transfer(db, transfer.id, outsider.id, TransferCancel(reason="x"), Actor())


# =============================================================================
# Complete
# =============================================================================

def test_complete_moves_student(db, world):
    transfer = _approved(db, world)

    result = _complete(db, world, transfer, to_class_group_id=world.dest_class.id, school_registration_code="S-77")
    completed = result.transfer

    assert result.warnings == []
    assert completed.status == TransferStatus.COMPLETED.value
    assert completed.completed_at is not None
    assert completed.to_enrollment_id is not None
    assert completed.snapshot_id is not None
    assert completed.metadata_["snapshot_id"] == str(completed.snapshot_id)

    source = db.get(Enrollment, world.enrollment.id)
    assert source.status == "transferred"
    assert source.left_at == date.today()
    open_memberships = db.execute(
        select(EnrollmentClassMembership).where(
            EnrollmentClassMembership.enrollment_id == source.id,
            EnrollmentClassMembership.valid_to.is_(None),
        )
    ).scalars().all()
    assert open_memberships == []

    destination = db.get(Enrollment, completed.to_enrollment_id)
    assert destination.tenant_id == world.dest_tenant.id
    assert destination.school_id == world.dest_school.id
    assert destination.academic_year_id == world.dest_year.id
    assert destination.status == "active"
    assert destination.context == {"transfer_id": str(transfer.id)}

    assert directory_service.get_tenant_profile(db, world.dest_tenant.id, world.student.id) is not None
    school_profile = db.execute(
        select(StudentSchoolProfile).where(
            StudentSchoolProfile.school_id == world.dest_school.id,
            StudentSchoolProfile.student_id == world.student.id,
        )
    ).scalar_one()
    assert school_profile.school_registration_code == "S-77"
    source_profile = db.execute(
        select(StudentSchoolProfile).where(
            StudentSchoolProfile.school_id == world.source_school.id,
            StudentSchoolProfile.student_id == world.student.id,
        )
    ).scalar_one()
    assert source_profile.left_at == date.today()
    assert source_profile.status == "inactive"
    assert source_profile.updated_by == DEST_ACTOR.actor_id

    assert _event_types(db, world.source_tenant.id, source.id)[:2] == ["transfer_completed", "transfer_requested"]
    assert sorted(_event_types(db, world.dest_tenant.id, destination.id)) == [
        "class_membership_added",
        "created",
    ]


def test_complete_seals_source_history(db, world):
    transfer = _approved(db, world)

    completed = _complete(db, world, transfer).transfer
    snapshot = db.get(AcademicRecordSnapshot, completed.snapshot_id)

    assert snapshot.tenant_id == world.source_tenant.id
    assert snapshot.kind == SnapshotKind.TRANSFER_PACKET.value
    assert snapshot.is_final is True
    assert snapshot.finalized_at is not None
    assert snapshot.source_type == SnapshotSourceType.TRANSFER.value
    assert snapshot.source_transfer_case_id == transfer.id
    assert snapshot.notes == snapshot_service.TRANSFER_SNAPSHOT_NOTES
    assert "assessment_scores" in snapshot.payload
    assert snapshot_service.verify_snapshot(db, snapshot.id, world.source_tenant.id).valid is True


def test_second_transfer_supersedes_earlier_packet(db, world):
    first = _complete(db, world, _approved(db, world)).transfer
    second = _complete(db, world, _approved(db, world, from_school_id=None)).transfer

    packets = db.execute(
        select(AcademicRecordSnapshot)
        .where(
            AcademicRecordSnapshot.tenant_id == world.source_tenant.id,
            AcademicRecordSnapshot.student_id == world.student.id,
            AcademicRecordSnapshot.kind == SnapshotKind.TRANSFER_PACKET.value,
        )
        .order_by(AcademicRecordSnapshot.version)
    ).scalars().all()

    assert [(p.id, p.version, p.status, p.is_final) for p in packets] == [
        (first.snapshot_id, 1, "superseded", True),
        (second.snapshot_id, 2, "active", True),
    ]


def test_complete_survives_snapshot_failure(db, world, monkeypatch):
    def fail(*args, **kwargs):
        raise StoreError("Failed to insert snapshot")

    monkeypatch.setattr(snapshot_service, "generate_for_transfer", fail)
    transfer = _approved(db, world)

    result = _complete(db, world, transfer)

    assert result.transfer.status == TransferStatus.COMPLETED.value
    assert result.transfer.snapshot_id is None
    assert result.transfer.metadata_["snapshot_error"] == "Failed to insert snapshot"
    assert len(result.warnings) == 1
    assert result.transfer.to_enrollment_id is not None


def test_complete_requires_approval(db, world):
    transfer = _request(db, world)

    with pytest.raises(ConflictError):
        _complete(db, world, transfer)


def test_source_cannot_complete(db, world):
    transfer = _approved(db, world)

    with pytest.raises(ForbiddenError):
        transfer_service.complete_transfer(
            db, transfer.id, world.source_tenant.id, TransferComplete(), world.source_actor
        )


def test_complete_rejects_foreign_class_group(db, world):
    transfer = _approved(db, world)

    with pytest.raises(ValidationError):
        _complete(db, world, transfer, to_class_group_id=world.source_class.id)

    assert transfer_service.require_transfer(db, transfer.id, world.dest_tenant.id).status == "approved"


def test_complete_without_active_year_skips_enrollment(db, world):
    world.dest_year.status = "closed"
    db.commit()
    transfer = _approved(db, world)

    result = _complete(db, world, transfer)

    assert result.transfer.status == TransferStatus.COMPLETED.value
    assert result.transfer.to_enrollment_id is None
    assert directory_service.get_tenant_profile(db, world.dest_tenant.id, world.student.id) is not None
    assert db.get(Enrollment, world.enrollment.id).status == "transferred"


def test_complete_uses_requested_academic_year(db, world):
    next_year = AcademicYear(
        id=uuid.uuid4(),
        tenant_id=world.dest_tenant.id,
        school_id=world.dest_school.id,
        name="2027",
        start_date=date(2027, 2, 1),
        end_date=date(2027, 12, 15),
        status="planned",
    )
    db.add(next_year)
    db.commit()
    transfer = _approved(db, world, to_academic_year_id=next_year.id)

    completed = _complete(db, world, transfer).transfer

    assert db.get(Enrollment, completed.to_enrollment_id).academic_year_id == next_year.id


def test_complete_rejects_year_of_other_school(db, world):
    transfer = _approved(db, world, to_academic_year_id=world.source_year.id)

    with pytest.raises(ValidationError):
        _complete(db, world, transfer)


def test_complete_resumes_without_duplicates(db, world, monkeypatch):
    def fail(*args, **kwargs):
        raise StoreError("Connection lost")

    transfer = _approved(db, world)
    monkeypatch.setattr(transfer_service, "_close_source_enrollment", fail)
    with pytest.raises(StoreError):
        _complete(db, world, transfer, to_class_group_id=world.dest_class.id)
    monkeypatch.undo()

    assert transfer_service.require_transfer(db, transfer.id, world.dest_tenant.id).status == "approved"

    completed = _complete(db, world, transfer, to_class_group_id=world.dest_class.id).transfer

    destination_enrollments = db.execute(
        select(Enrollment).where(Enrollment.tenant_id == world.dest_tenant.id)
    ).unique().scalars().all()
    assert [e.id for e in destination_enrollments] == [completed.to_enrollment_id]
    memberships = db.execute(
        select(EnrollmentClassMembership).where(
            EnrollmentClassMembership.enrollment_id == completed.to_enrollment_id
        )
    ).unique().scalars().all()
    assert len(memberships) == 1
    created_events = db.execute(
        select(EnrollmentEvent).where(
            EnrollmentEvent.enrollment_id == completed.to_enrollment_id,
            EnrollmentEvent.event_type == EnrollmentEventType.CREATED.value,
        )
    ).scalars().all()
    assert len(created_events) == 1


def test_same_school_transfer_creates_new_enrollment(db, world):
    transfer = _request(
        db,
        world,
        to_tenant_id=world.source_tenant.id,
        to_school_id=world.source_school.id,
    )
    transfer_service.approve_transfer(db, transfer.id, world.source_tenant.id, TransferApprove(), Actor())

    completed = transfer_service.complete_transfer(
        db, transfer.id, world.source_tenant.id, TransferComplete(), Actor()
    ).transfer

    assert completed.to_enrollment_id not in (None, world.enrollment.id)
    assert db.get(Enrollment, world.enrollment.id).status == "transferred"
    assert db.get(Enrollment, completed.to_enrollment_id).status == "active"
    profile = db.execute(
        select(StudentSchoolProfile).where(
            StudentSchoolProfile.school_id == world.source_school.id,
            StudentSchoolProfile.student_id == world.student.id,
        )
    ).scalar_one()
    assert profile.left_at is None


# =============================================================================
# Check-then-create helpers
# =============================================================================

def test_resolve_helpers_reuse_existing_rows(db, world):
    profile, created = enrollment_service.resolve_or_create_tenant_profile(
        db, world.source_tenant.id, world.student.id
    )
    assert created is False

    first, first_created = enrollment_service.resolve_or_create_class_membership(
        db, world.dest_tenant.id, world.enrollment.id, world.dest_class.id
    )
    again, again_created = enrollment_service.resolve_or_create_class_membership(
        db, world.dest_tenant.id, world.enrollment.id, world.dest_class.id
    )

    assert first_created is True
    assert again_created is False
    assert again.id == first.id


def test_mark_transferred_is_idempotent(db, world):
    assert enrollment_service.mark_transferred(db, world.enrollment) is True
    assert enrollment_service.mark_transferred(db, world.enrollment) is False


# =============================================================================
# Remove / list
# =============================================================================

def test_remove_soft_deletes(db, world):
    transfer = _request(db, world)

    transfer_service.remove_transfer(db, transfer.id, world.source_tenant.id, world.source_actor)

    assert transfer_service.get_transfer(db, transfer.id, world.source_tenant.id) is None
    # A removed request no longer blocks a new one
    assert _request(db, world).status == TransferStatus.REQUESTED.value


def test_destination_cannot_remove(db, world):
    transfer = _request(db, world)

    with pytest.raises(ForbiddenError):
        transfer_service.remove_transfer(db, transfer.id, world.dest_tenant.id, DEST_ACTOR)


def test_completed_transfer_cannot_be_removed(db, world):
    transfer = _approved(db, world)
    _complete(db, world, transfer)

    with pytest.raises(ConflictError):
        transfer_service.remove_transfer(db, transfer.id, world.source_tenant.id, world.source_actor)


def test_list_transfers_by_direction(db, world):
    transfer = _request(db, world)

    outgoing, outgoing_total = transfer_service.list_transfers(
        db, world.source_tenant.id, TransferFilters(direction=TransferDirection.OUTGOING)
    )
    incoming_at_source, _ = transfer_service.list_transfers(
        db, world.source_tenant.id, TransferFilters(direction=TransferDirection.INCOMING)
    )
    incoming, incoming_total = transfer_service.list_transfers(
        db,
        world.dest_tenant.id,
        TransferFilters(direction=TransferDirection.INCOMING, status=TransferStatus.REQUESTED),
        PaginationParams(page=1, per_page=10),
    )

    assert [t.id for t in outgoing] == [transfer.id]
    assert outgoing_total == 1
    assert incoming_at_source == []
    assert [t.id for t in incoming] == [transfer.id]
    assert incoming_total == 1
