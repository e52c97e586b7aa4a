"""App file schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Literal, Optional

from .version import VersionResponse


class FileWrite(BaseModel):
    """Write one file, optionally recording a version."""
    path: str = Field(..., min_length=1, max_length=500)
    content: str
    file_type: Optional[str] = None
    snapshot: bool = True
    changelog: Optional[str] = None


class FileChange(BaseModel):
    """One change inside a batch write."""
    path: str = Field(..., min_length=1, max_length=500)
    action: Literal["write", "delete"] = "write"
    content: Optional[str] = None
    file_type: Optional[str] = None


class FileBatchWrite(BaseModel):
    """Several file changes recorded as a single version."""
    changes: List[FileChange] = Field(..., min_length=1)
    changelog: Optional[str] = None


class FileResponse(BaseModel):
    """File metadata; content is fetched separately."""
    id: int
    app_id: int
    path: str
    file_type: str
    storage_location: str
    content_hash: str
    size_bytes: int
    sync_status: Optional[str] = None
    sync_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FileContentResponse(FileResponse):
    """File metadata with its content resolved from whichever tier holds it."""
    content: str


class FileWriteResponse(BaseModel):
    """Result of a write: resulting file metadata plus the version, if one was taken."""
    files: List[FileResponse]
    deleted_paths: List[str] = []
    version: Optional[VersionResponse] = None
    scheduled_jobs: List[str] = []


class TierMigrationRequest(BaseModel):
    """Move a file to another storage tier."""
    target_tier: Literal["inline", "hybrid", "object_store"]


class VerifyResponse(BaseModel):
    """Integrity check recomputed from raw bytes at every populated tier."""
    storage_location: str
    content_hash: str
    inline_ok: Optional[bool] = None
    object_store_ok: Optional[bool] = None
    object_store_error: Optional[str] = None
    valid: bool
