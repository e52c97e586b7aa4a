"""Deployment endpoints and the executor outcome callback."""

import logging
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from ..database import get_db
from ..schemas.deployment import (
    DeploymentResponse,
    DeploymentStatusResponse,
    DeployRequest,
    OutcomeRequest,
)
from ..services import DeploymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/apps/{app_id}/deployments", tags=["deployments"])


@router.post("", response_model=DeploymentResponse, status_code=202)
def deploy(app_id: int, request: DeployRequest, db: Session = Depends(get_db)):
    """Request a deployment. The row starts pending; the executor reports the outcome."""
    return DeploymentService(db).deploy(
        app_id,
        request.environment,
        commit_sha=request.commit_sha,
        deployed_version=request.deployed_version,
        deployment_type=request.deployment_type,
    )


@router.get("", response_model=List[DeploymentResponse])
def list_deployments(
    app_id: int,
    environment: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """Deployment log, newest first."""
    return DeploymentService(db).history(app_id, environment, limit)


@router.get("/status", response_model=DeploymentStatusResponse)
def deployment_status(app_id: int, db: Session = Depends(get_db)):
    """What is live in each environment."""
    return DeploymentService(db).current_status(app_id)


@router.get("/{deployment_id}", response_model=DeploymentResponse)
def get_deployment(app_id: int, deployment_id: int, db: Session = Depends(get_db)):
    return DeploymentService(db).get_deployment(app_id, deployment_id)


@router.post("/{deployment_id}/rollback", response_model=DeploymentResponse, status_code=202)
def rollback(
    app_id: int,
    deployment_id: int,
    environment: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """Roll an environment back to an earlier original deployment."""
    return DeploymentService(db).rollback(app_id, deployment_id, environment)


outcome_router = APIRouter(prefix="/api/deployments", tags=["deployments"])


@outcome_router.post("/{deployment_id}/outcome", response_model=DeploymentResponse)
def report_outcome(deployment_id: int, request: OutcomeRequest, db: Session = Depends(get_db)):
    """Executor callback moving a pending deployment to success or failed."""
    deployment = DeploymentService(db).mark_outcome(
        deployment_id,
        request.status,
        deployed_version=request.deployed_version,
        error_message=request.error_message,
        metadata=request.metadata,
    )
    logger.info(f"Outcome reported for deployment {deployment_id}: {request.status}")
    return deployment
