"""Router for cross-tenant transfer cases."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_db, get_tenant_context
from app.db.enums import TransferDirection, TransferStatus
from app.schemas.auth import TenantContext
from app.schemas.transfer import (
    TransferActionResponse,
    TransferApprove,
    TransferCancel,
    TransferComplete,
    TransferCreate,
    TransferFilters,
    TransferListResponse,
    TransferRead,
    TransferReject,
)
from app.services import transfer_service
from app.utils.pagination import PaginationParams, get_pagination


router = APIRouter(prefix="/transfers", tags=["Transfers"])


@router.post("", response_model=TransferActionResponse, status_code=201)
def create_transfer(
    data: TransferCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    """Open a transfer request from the acting (source) tenant."""
    result = transfer_service.create_transfer(db, ctx.tenant_id, data, ctx.actor)
    return TransferActionResponse(
        transfer=TransferRead.model_validate(result.transfer),
        warnings=result.warnings,
    )


@router.get("", response_model=TransferListResponse)
def list_transfers(
    status: TransferStatus | None = None,
    direction: TransferDirection | None = None,
    student_id: UUID | None = None,
    pagination: PaginationParams = Depends(get_pagination),
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    """List transfers in or out of the acting tenant, newest first."""
    filters = TransferFilters(status=status, direction=direction, student_id=student_id)
    transfers, total = transfer_service.list_transfers(db, ctx.tenant_id, filters, pagination)
    return TransferListResponse(
        items=[TransferRead.model_validate(t) for t in transfers],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
        pages=pagination.pages(total),
    )


@router.get("/{transfer_id}", response_model=TransferRead)
def get_transfer(
    transfer_id: UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    return transfer_service.require_transfer(db, transfer_id, ctx.tenant_id)


@router.post("/{transfer_id}/approve", response_model=TransferRead)
def approve_transfer(
    transfer_id: UUID,
    data: TransferApprove | None = None,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    """Approve a requested transfer (destination tenant only)."""
    return transfer_service.approve_transfer(
        db, transfer_id, ctx.tenant_id, data or TransferApprove(), ctx.actor
    )


@router.post("/{transfer_id}/reject", response_model=TransferRead)
def reject_transfer(
    transfer_id: UUID,
    data: TransferReject,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    """Reject a requested transfer (destination tenant only)."""
    return transfer_service.reject_transfer(db, transfer_id, ctx.tenant_id, data, ctx.actor)


@router.post("/{transfer_id}/complete", response_model=TransferActionResponse)
def complete_transfer(
    transfer_id: UUID,
    data: TransferComplete | None = None,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    """
    Complete an approved transfer (destination tenant only).

    Snapshot or event failures do not fail the call; they come back in
    ``warnings``.
    """
    result = transfer_service.complete_transfer(
        db, transfer_id, ctx.tenant_id, data or TransferComplete(), ctx.actor
    )
    return TransferActionResponse(
        transfer=TransferRead.model_validate(result.transfer),
        warnings=result.warnings,
    )


@router.post("/{transfer_id}/cancel", response_model=TransferRead)
def cancel_transfer(
    transfer_id: UUID,
    data: TransferCancel,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    return transfer_service.cancel_transfer(db, transfer_id, ctx.tenant_id, data, ctx.actor)


@router.delete("/{transfer_id}", status_code=204)
def remove_transfer(
    transfer_id: UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    """Soft-delete a transfer that has not completed (source tenant only)."""
    transfer_service.remove_transfer(db, transfer_id, ctx.tenant_id, ctx.actor)
