"""App endpoints."""

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session
from typing import List, Optional

from ..database import get_db
from ..schemas.app import AppCreate, AppResponse
from ..services import AppService
from ..storage import ObjectStorage, get_object_store

router = APIRouter(prefix="/api/apps", tags=["apps"])


@router.post("", response_model=AppResponse, status_code=201)
def create_app(
    data: AppCreate,
    db: Session = Depends(get_db),
    object_store: Optional[ObjectStorage] = Depends(get_object_store),
):
    """Create an app; its database shard is assigned here, once."""
    return AppService(db, object_store).create_app(data)


@router.get("", response_model=List[AppResponse])
def list_apps(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return AppService(db).list_apps(skip, limit)


@router.get("/{app_id}", response_model=AppResponse)
def get_app(app_id: int, db: Session = Depends(get_db)):
    return AppService(db).get_app(app_id)


@router.delete("/{app_id}", status_code=204)
def delete_app(
    app_id: int,
    db: Session = Depends(get_db),
    object_store: Optional[ObjectStorage] = Depends(get_object_store),
):
    """Delete an app with its files, versions and deployment log."""
    AppService(db, object_store).delete_app(app_id)
    return Response(status_code=204)
