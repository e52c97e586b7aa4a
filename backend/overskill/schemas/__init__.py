"""Pydantic schemas for API validation."""

from .app import AppCreate, AppResponse
from .version import (
    VersionResponse,
    VersionFileResponse,
    VersionDetailResponse,
    RestoreResponse,
    LineChange,
    FileDiff,
    DiffResponse,
)
from .file import (
    FileWrite,
    FileChange,
    FileBatchWrite,
    FileResponse,
    FileContentResponse,
    FileWriteResponse,
    TierMigrationRequest,
    VerifyResponse,
)
from .deployment import (
    DeployRequest,
    OutcomeRequest,
    DeploymentResponse,
    EnvironmentStatus,
    DeploymentStatusResponse,
)
from .storage import (
    BatchError,
    BatchResult,
    SizeBreakdown,
    MigrationPlan,
    SweepRequest,
    RollbackSweepRequest,
    SweepResponse,
    TierUsage,
    StorageReport,
)
from .job import JobResponse

__all__ = [
    "AppCreate", "AppResponse",
    "VersionResponse", "VersionFileResponse", "VersionDetailResponse",
    "RestoreResponse", "LineChange", "FileDiff", "DiffResponse",
    "FileWrite", "FileChange", "FileBatchWrite", "FileResponse",
    "FileContentResponse", "FileWriteResponse", "TierMigrationRequest", "VerifyResponse",
    "DeployRequest", "OutcomeRequest", "DeploymentResponse",
    "EnvironmentStatus", "DeploymentStatusResponse",
    "BatchError", "BatchResult", "SizeBreakdown", "MigrationPlan",
    "SweepRequest", "RollbackSweepRequest", "SweepResponse", "TierUsage", "StorageReport",
    "JobResponse",
]
