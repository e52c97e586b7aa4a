"""App file endpoints.

Handlers are thin: FileService owns the write path (content store,
snapshot, promotion scheduling).
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from ..database import get_db
from ..schemas.file import (
    FileBatchWrite,
    FileContentResponse,
    FileResponse,
    FileWrite,
    FileWriteResponse,
    TierMigrationRequest,
    VerifyResponse,
)
from ..services import FileService
from ..storage import ObjectStorage, get_object_store

router = APIRouter(prefix="/api/apps/{app_id}/files", tags=["files"])


@router.get("", response_model=List[FileResponse])
def list_files(app_id: int, db: Session = Depends(get_db)):
    """List file metadata for an app, ordered by path."""
    return FileService(db).list_files(app_id)


@router.put("", response_model=FileWriteResponse)
def write_file(
    app_id: int,
    data: FileWrite,
    db: Session = Depends(get_db),
    object_store: Optional[ObjectStorage] = Depends(get_object_store),
):
    """Create or overwrite one file.

    The write always lands inline; promotion to R2 happens in the
    background when the file is large enough.
    """
    return FileService(db, object_store).write_file(app_id, data)


@router.post("/batch", response_model=FileWriteResponse)
def write_batch(
    app_id: int,
    data: FileBatchWrite,
    db: Session = Depends(get_db),
    object_store: Optional[ObjectStorage] = Depends(get_object_store),
):
    """Apply several writes and deletes as one version."""
    return FileService(db, object_store).write_batch(app_id, data)


@router.get("/{file_id}", response_model=FileContentResponse)
def get_file(
    app_id: int,
    file_id: int,
    db: Session = Depends(get_db),
    object_store: Optional[ObjectStorage] = Depends(get_object_store),
):
    """File metadata plus content, read from whichever tier holds it."""
    service = FileService(db, object_store)
    file = service.get_file(app_id, file_id)
    content = service.read_content(file)
    return FileContentResponse(**FileResponse.model_validate(file).model_dump(), content=content)


@router.delete("/{file_id}", response_model=FileWriteResponse)
def delete_file(
    app_id: int,
    file_id: int,
    snapshot: bool = Query(True),
    db: Session = Depends(get_db),
    object_store: Optional[ObjectStorage] = Depends(get_object_store),
):
    return FileService(db, object_store).delete_file(app_id, file_id, snapshot=snapshot)


@router.post("/{file_id}/migrate", response_model=FileResponse)
def migrate_file(
    app_id: int,
    file_id: int,
    request: TierMigrationRequest,
    db: Session = Depends(get_db),
    object_store: Optional[ObjectStorage] = Depends(get_object_store),
):
    """Move one file to another tier now (verify-then-commit)."""
    return FileService(db, object_store).migrate_file(app_id, file_id, request.target_tier)


@router.get("/{file_id}/verify", response_model=VerifyResponse)
def verify_file(
    app_id: int,
    file_id: int,
    db: Session = Depends(get_db),
    object_store: Optional[ObjectStorage] = Depends(get_object_store),
):
    """Recompute the content hash at every populated tier, bypassing the cache."""
    return FileService(db, object_store).verify_file(app_id, file_id)
