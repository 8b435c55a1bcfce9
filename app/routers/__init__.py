"""API routers."""

from app.routers.enrollments import router as enrollments_router
from app.routers.snapshots import router as snapshots_router
from app.routers.students import router as students_router
from app.routers.transfers import router as transfers_router

__all__ = [
    "enrollments_router",
    "snapshots_router",
    "students_router",
    "transfers_router",
]
