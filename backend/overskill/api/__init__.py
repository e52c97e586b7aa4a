"""API routes."""

from .apps import router as apps_router
from .files import router as files_router
from .versions import router as versions_router
from .deployments import router as deployments_router, outcome_router
from .storage import router as storage_router
from .jobs import router as jobs_router

__all__ = [
    "apps_router",
    "files_router",
    "versions_router",
    "deployments_router",
    "outcome_router",
    "storage_router",
    "jobs_router",
]
