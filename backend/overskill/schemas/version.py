"""Version snapshot schemas."""

from pydantic import BaseModel
from datetime import datetime
from typing import List, Optional


class VersionResponse(BaseModel):
    """Version metadata."""
    id: int
    app_id: int
    version_number: str
    display_name: Optional[str] = None
    changelog: Optional[str] = None
    restored_from_id: Optional[int] = None
    file_count: int
    storage_location: str
    content_hash: str
    size_bytes: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VersionFileResponse(BaseModel):
    """A file captured by a version."""
    id: int
    app_file_id: Optional[int] = None
    path: str
    action: str
    storage_location: str
    content_hash: str
    size_bytes: int

    class Config:
        from_attributes = True


class VersionDetailResponse(VersionResponse):
    """Version metadata with its per-file records."""
    files: List[VersionFileResponse] = []


class RestoreResponse(BaseModel):
    """Outcome of restoring a version."""
    version: VersionResponse
    restored_count: int
    failed_paths: List[str] = []


class LineChange(BaseModel):
    """One position where the old and new line differ. None = no line."""
    line: int
    old: Optional[str] = None
    new: Optional[str] = None


class FileDiff(BaseModel):
    """Per-path change between two versions."""
    path: str
    status: str  # created, updated, deleted
    additions: int
    deletions: int
    changes: List[LineChange] = []


class DiffResponse(BaseModel):
    """Changes going from one version to another, sorted by path."""
    from_version: str
    to_version: str
    files: List[FileDiff]
    total_additions: int
    total_deletions: int
