"""API tests for /transfers."""

import uuid

import pytest


async def _create_transfer(client, world, headers_for):
    response = await client.post(
        "/transfers",
        json={
            "student_id": str(world.student.id),
            "from_school_id": str(world.source_school.id),
            "to_tenant_id": str(world.dest_tenant.id),
            "to_school_id": str(world.dest_school.id),
            "notes": "Moving south",
        },
        headers=headers_for(world.source_tenant.id, world.user_id),
    )
    assert response.status_code == 201, response.text
    return response.json()["transfer"]


@pytest.mark.asyncio
async def test_full_transfer_flow(client, world, headers_for):
    transfer = await _create_transfer(client, world, headers_for)
    assert transfer["status"] == "requested"
    assert transfer["metadata"] == {"notes": "Moving south"}
    assert transfer["created_by"] == str(world.user_id)

    dest_headers = headers_for(world.dest_tenant.id, uuid.uuid4())
    approve = await client.post(f"/transfers/{transfer['id']}/approve", headers=dest_headers)
    assert approve.status_code == 200, approve.text
    assert approve.json()["status"] == "approved"

    complete = await client.post(
        f"/transfers/{transfer['id']}/complete",
        json={"to_class_group_id": str(world.dest_class.id), "notes": "Welcome"},
        headers=dest_headers,
    )
    assert complete.status_code == 200, complete.text
    body = complete.json()
    assert body["warnings"] == []
    assert body["transfer"]["status"] == "completed"
    assert body["transfer"]["snapshot_id"] is not None
    assert body["transfer"]["to_enrollment_id"] is not None
    assert body["transfer"]["metadata"]["completion_notes"] == "Welcome"

    snapshot = await client.get(
        f"/academic-record-snapshots/{body['transfer']['snapshot_id']}",
        headers=headers_for(world.source_tenant.id),
    )
    assert snapshot.status_code == 200, snapshot.text
    assert snapshot.json()["kind"] == "transfer_packet"


@pytest.mark.asyncio
async def test_duplicate_pending_transfer_is_409(client, world, headers_for):
    await _create_transfer(client, world, headers_for)

    response = await client.post(
        "/transfers",
        json={"student_id": str(world.student.id), "to_tenant_id": str(world.dest_tenant.id)},
        headers=headers_for(world.source_tenant.id),
    )

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "conflict"
    assert body["context"]["current_status"] == "requested"


@pytest.mark.asyncio
async def test_source_cannot_approve_is_403(client, world, headers_for):
    transfer = await _create_transfer(client, world, headers_for)

    response = await client.post(
        f"/transfers/{transfer['id']}/approve",
        headers=headers_for(world.source_tenant.id),
    )

    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"


@pytest.mark.asyncio
async def test_complete_before_approval_is_409(client, world, headers_for):
    transfer = await _create_transfer(client, world, headers_for)

    response = await client.post(
        f"/transfers/{transfer['id']}/complete",
        headers=headers_for(world.dest_tenant.id),
    )

    assert response.status_code == 409
    assert response.json()["context"]["required_status"] == ["approved"]


@pytest.mark.asyncio
async def test_reject_requires_reason(client, world, headers_for):
    transfer = await _create_transfer(client, world, headers_for)

    response = await client.post(
        f"/transfers/{transfer['id']}/reject",
        json={},
        headers=headers_for(world.dest_tenant.id),
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_cancel_then_list(client, world, headers_for):
    transfer = await _create_transfer(client, world, headers_for)

    cancel = await client.post(
        f"/transfers/{transfer['id']}/cancel",
        json={"reason": "Plans changed"},
        headers=headers_for(world.dest_tenant.id),
    )
    assert cancel.status_code == 200, cancel.text
    assert cancel.json()["status"] == "cancelled"

    outgoing = await client.get(
        "/transfers",
        params={"direction": "outgoing", "status": "cancelled"},
        headers=headers_for(world.source_tenant.id),
    )
    assert outgoing.status_code == 200
    listing = outgoing.json()
    assert listing["total"] == 1
    assert listing["pages"] == 1
    assert listing["items"][0]["id"] == transfer["id"]


@pytest.mark.asyncio
async def test_delete_transfer(client, world, headers_for):
    transfer = await _create_transfer(client, world, headers_for)

    response = await client.delete(
        f"/transfers/{transfer['id']}",
        headers=headers_for(world.source_tenant.id),
    )
    assert response.status_code == 204

    missing = await client.get(
        f"/transfers/{transfer['id']}",
        headers=headers_for(world.source_tenant.id),
    )
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_invalid_tenant_header_is_400(client, world):
    response = await client.get("/transfers", headers={"X-Tenant-ID": "not-a-uuid"})

    assert response.status_code == 400
