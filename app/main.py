"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.core.config import settings
from app.core.deps import TENANT_HEADER, USER_HEADER
from app.core.structured_logging import build_log_context, configure_logging
from app.db.session import engine
from app.services.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    RecordsServiceError,
    StoreError,
    ValidationError,
)

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,  # 10% of requests for performance monitoring
        send_default_pii=False,  # Student records stay out of Sentry
    )
    logging.info("Sentry initialized for error tracking")


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="School Records API",
    description="Transfer cases, academic record snapshots and the enrollment event ledger",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", TENANT_HEADER, USER_HEADER],
    expose_headers=["X-Request-ID"],
)


# ============================================================================
# Error Handling
# ============================================================================

ERROR_STATUS_CODES: dict[type[RecordsServiceError], int] = {
    ValidationError: 400,
    ForbiddenError: 403,
    NotFoundError: 404,
    ConflictError: 409,
    StoreError: 503,
}


@app.exception_handler(RecordsServiceError)
async def records_error_handler(request: Request, exc: RecordsServiceError):
    """Map the service error taxonomy to HTTP responses."""
    status_code = next(
        (code for cls, code in ERROR_STATUS_CODES.items() if isinstance(exc, cls)),
        500,
    )
    log = logger.error if status_code >= 500 else logger.info
    log(
        "%s: %s",
        exc.code,
        exc.message,
        extra=build_log_context(
            tenant_id=request.headers.get(TENANT_HEADER),
            request_id=request.headers.get("X-Request-ID"),
            route=request.url.path,
            method=request.method,
        ),
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code, "context": exc.context},
    )


# ============================================================================
# Routers
# ============================================================================

from app.routers import enrollments, snapshots, students, transfers

app.include_router(transfers.router)
app.include_router(snapshots.router)
app.include_router(enrollments.router)
app.include_router(students.router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
