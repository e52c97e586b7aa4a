"""Deployment schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, Literal, Optional


class DeployRequest(BaseModel):
    """Request a deployment of the app's current files."""
    environment: str
    commit_sha: Optional[str] = Field(default=None, max_length=64)
    deployed_version: Optional[str] = Field(default=None, max_length=50)
    deployment_type: Literal["manual", "auto"] = "manual"


class OutcomeRequest(BaseModel):
    """Terminal status reported by the deployment executor."""
    status: Literal["success", "failed"]
    deployed_version: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class DeploymentResponse(BaseModel):
    """One row of the deployment log."""
    id: int
    app_id: int
    environment: str
    status: str
    is_rollback: bool
    rollback_of_id: Optional[int] = None
    superseded_at: Optional[datetime] = None
    superseded_by_id: Optional[int] = None
    deployment_url: Optional[str] = None
    commit_sha: Optional[str] = None
    deployed_version: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="deployment_metadata")
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EnvironmentStatus(BaseModel):
    """What is live in one environment."""
    status: str
    url: Optional[str] = None
    deployed_at: Optional[datetime] = None
    version: Optional[str] = None
    deployment_id: Optional[int] = None
    is_rollback: bool = False
    rolled_back_to: Optional[int] = None
    error_message: Optional[str] = None


class DeploymentStatusResponse(BaseModel):
    """Aggregated status across all environments."""
    app_id: int
    preview: EnvironmentStatus
    staging: EnvironmentStatus
    production: EnvironmentStatus
