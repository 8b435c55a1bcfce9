"""FastAPI dependencies for tenant context and database access."""

from typing import Generator
from uuid import UUID

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.schemas.auth import TenantContext


# Header names set by the upstream gateway after authentication
TENANT_HEADER = "X-Tenant-ID"
USER_HEADER = "X-User-ID"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _parse_uuid(value: str, header: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {header} header")


def get_tenant_context(
    x_tenant_id: str | None = Header(None, alias=TENANT_HEADER),
    x_user_id: str | None = Header(None, alias=USER_HEADER),
) -> TenantContext:
    """
    Acting tenant (and optional user) for the request.

    Raises:
        HTTPException 401: Tenant header missing
        HTTPException 400: Header is not a UUID
    """
    if not x_tenant_id:
        raise HTTPException(status_code=401, detail="Tenant context required")

    return TenantContext(
        tenant_id=_parse_uuid(x_tenant_id, TENANT_HEADER),
        user_id=_parse_uuid(x_user_id, USER_HEADER) if x_user_id else None,
    )


def require_user(ctx: TenantContext = Depends(get_tenant_context)) -> TenantContext:
    """
    Tenant context with a known acting user.

    Raises:
        HTTPException 401: User header missing
    """
    if not ctx.user_id:
        raise HTTPException(status_code=401, detail="User context required")
    return ctx
