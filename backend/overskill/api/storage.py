"""Storage administration: tier sweeps, rollback to inline and usage reporting."""

import logging
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from ..database import get_db
from ..schemas.storage import (
    BatchResult,
    MigrationPlan,
    RollbackSweepRequest,
    StorageReport,
    SweepRequest,
    SweepResponse,
)
from ..services import StorageAnalyticsService, TieringService
from ..storage import ObjectStorage, get_object_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/storage", tags=["storage"])


def _sweep_response(dry_run: bool, outcome) -> SweepResponse:
    if isinstance(outcome, MigrationPlan):
        return SweepResponse(dry_run=dry_run, plan=outcome)
    return SweepResponse(dry_run=dry_run, result=outcome)


@router.post("/migrations", response_model=SweepResponse)
def run_migration_sweep(
    request: SweepRequest,
    db: Session = Depends(get_db),
    object_store: Optional[ObjectStorage] = Depends(get_object_store),
):
    """Promote inline content to R2. ``dry_run`` only reports what would move."""
    service = TieringService(db, object_store)
    if request.kind == "files":
        outcome = service.migrate_files(request.app_ids, request.strategy, request.dry_run)
    elif request.kind == "versions":
        outcome = service.migrate_versions(request.app_ids, request.min_snapshot_bytes, request.dry_run)
    else:
        outcome = service.migrate_version_files(request.app_ids, request.dry_run)
    logger.info(f"Storage sweep '{request.kind}' requested (dry_run={request.dry_run})")
    return _sweep_response(request.dry_run, outcome)


@router.post("/rollback", response_model=SweepResponse)
def rollback_to_inline(
    request: RollbackSweepRequest,
    db: Session = Depends(get_db),
    object_store: Optional[ObjectStorage] = Depends(get_object_store),
):
    """Bring tiered content back into the database."""
    outcome = TieringService(db, object_store).rollback_to_inline(request.app_ids, request.dry_run)
    return _sweep_response(request.dry_run, outcome)


@router.post("/cleanup", response_model=BatchResult)
def cleanup_hybrid(
    app_ids: Optional[List[int]] = Query(None),
    db: Session = Depends(get_db),
    object_store: Optional[ObjectStorage] = Depends(get_object_store),
):
    """Drop inline copies of hybrid records whose R2 copy verifies."""
    return TieringService(db, object_store).cleanup_hybrid(app_ids)


@router.get("/report", response_model=StorageReport)
def storage_report(
    app_ids: Optional[List[int]] = Query(None),
    db: Session = Depends(get_db),
):
    return StorageAnalyticsService(db).report(app_ids)
