"""Version endpoints: history, diff and restore."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from ..database import get_db
from ..schemas.version import (
    DiffResponse,
    RestoreResponse,
    VersionDetailResponse,
    VersionFileResponse,
    VersionResponse,
)
from ..services import VersionService
from ..storage import ObjectStorage, get_object_store

router = APIRouter(prefix="/api/apps/{app_id}/versions", tags=["versions"])


@router.get("", response_model=List[VersionResponse])
def list_versions(
    app_id: int,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """List versions for an app, newest first."""
    return VersionService(db).list_versions(app_id, skip, limit)


@router.get("/diff", response_model=DiffResponse)
def diff_versions(
    app_id: int,
    from_id: int = Query(...),
    to_id: int = Query(...),
    db: Session = Depends(get_db),
    object_store: Optional[ObjectStorage] = Depends(get_object_store),
):
    return VersionService(db, object_store).diff(app_id, from_id, to_id)


@router.get("/{version_id}", response_model=VersionDetailResponse)
def get_version(app_id: int, version_id: int, db: Session = Depends(get_db)):
    """Version metadata with the per-file records it captured."""
    service = VersionService(db)
    version = service.get_version(app_id, version_id)
    files = service.get_version_files(app_id, version_id)
    return VersionDetailResponse(
        **VersionResponse.model_validate(version).model_dump(),
        files=[VersionFileResponse.model_validate(f) for f in files],
    )


@router.post("/{version_id}/restore", response_model=RestoreResponse)
def restore_version(
    app_id: int,
    version_id: int,
    db: Session = Depends(get_db),
    object_store: Optional[ObjectStorage] = Depends(get_object_store),
):
    """Restore the app to a version's state. The restore is itself a new version."""
    return VersionService(db, object_store).restore(app_id, version_id)
