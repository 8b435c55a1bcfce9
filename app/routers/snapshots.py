"""Router for academic record snapshots."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_db, get_tenant_context, require_user
from app.db.enums import SnapshotKind, SnapshotStatus
from app.schemas.auth import TenantContext
from app.schemas.snapshot import (
    SnapshotFilters,
    SnapshotFinalize,
    SnapshotGenerate,
    SnapshotListItem,
    SnapshotListResponse,
    SnapshotRead,
    SnapshotRevoke,
    SnapshotVerification,
)
from app.services import snapshot_service


router = APIRouter(prefix="/academic-record-snapshots", tags=["Academic Record Snapshots"])


@router.post("/generate", response_model=SnapshotRead, status_code=201)
def generate_snapshot(
    data: SnapshotGenerate,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    """Generate a draft snapshot of the student's academic record."""
    return snapshot_service.generate_snapshot(db, ctx.tenant_id, data, ctx.actor)


@router.get("", response_model=SnapshotListResponse)
def list_snapshots(
    student_id: UUID | None = None,
    kind: SnapshotKind | None = None,
    status: SnapshotStatus | None = None,
    academic_year_id: UUID | None = None,
    is_final: bool | None = None,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    filters = SnapshotFilters(
        student_id=student_id,
        kind=kind,
        status=status,
        academic_year_id=academic_year_id,
        is_final=is_final,
    )
    snapshots = snapshot_service.list_snapshots(db, ctx.tenant_id, filters)
    return SnapshotListResponse(
        items=[SnapshotListItem.model_validate(s) for s in snapshots],
        total=len(snapshots),
    )


@router.get("/{snapshot_id}", response_model=SnapshotRead)
def get_snapshot(
    snapshot_id: UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    return snapshot_service.require_snapshot(db, snapshot_id, ctx.tenant_id)


@router.post("/{snapshot_id}/finalize", response_model=SnapshotRead)
def finalize_snapshot(
    snapshot_id: UUID,
    data: SnapshotFinalize | None = None,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    """Finalize a draft; other active snapshots of the same kind are superseded."""
    data = data or SnapshotFinalize()
    return snapshot_service.finalize_snapshot(db, snapshot_id, ctx.tenant_id, data.notes, ctx.actor)


@router.post("/{snapshot_id}/revoke", response_model=SnapshotRead)
def revoke_snapshot(
    snapshot_id: UUID,
    data: SnapshotRevoke,
    ctx: TenantContext = Depends(require_user),
    db: Session = Depends(get_db),
):
    """Revoke a snapshot. Requires a known acting user."""
    return snapshot_service.revoke_snapshot(db, snapshot_id, ctx.tenant_id, data.reason, ctx.actor)


@router.get("/{snapshot_id}/verify", response_model=SnapshotVerification)
def verify_snapshot(
    snapshot_id: UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    """Recompute the payload hash. A mismatch returns valid=false, not an error."""
    return snapshot_service.verify_snapshot(db, snapshot_id, ctx.tenant_id)
