"""Deployment state machine.

Each (app, environment) pair moves no_deployment -> pending -> success |
failed. A new deploy supersedes the previous active row instead of
updating it, and rollbacks are new rows that point at an original
deployment. The build itself is done by an external executor, handed
the work through a background job.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..exceptions import (
    DuplicateActiveDeploymentError,
    InvalidStateTransitionError,
    RollbackNotAllowedError,
    ValidationError,
)
from ..models import App, AppDeployment
from ..models.deployment import ENVIRONMENTS
from ..repositories import AppRepository, DeploymentRepository, FileRepository, VersionRepository
from ..schemas.deployment import DeploymentStatusResponse, EnvironmentStatus
from .job_service import JobService

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("success", "failed")

# App columns holding the current status of each environment.
_APP_STATUS_FIELDS = {
    "production": {
        "status": "deployment_status",
        "url": "published_url",
        "deployed_at": "deployed_at",
        "version": "deployed_version",
    },
    "staging": {
        "status": "staging_deployment_status",
        "url": "staging_url",
        "deployed_at": "staging_deployed_at",
        "version": "staging_version",
    },
    "preview": {
        "status": "preview_deployment_status",
        "url": "preview_url",
        "deployed_at": "preview_deployed_at",
    },
}


def validate_environment(environment: str) -> str:
    if environment not in ENVIRONMENTS:
        raise ValidationError(
            f"Invalid environment '{environment}'. Must be one of: {', '.join(ENVIRONMENTS)}",
            field="environment",
        )
    return environment


def deployment_url(app: App, environment: str) -> str:
    """Deterministic public URL for an app in one environment."""
    validate_environment(environment)
    host = f"overskill-{app.slug}-{app.obfuscated_id}"
    if environment != "production":
        host = f"{environment}-{host}"
    return f"https://{host}.{settings.deploy_base_domain}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DeploymentService:
    """Records deployment attempts, outcomes and rollbacks."""

    def __init__(self, db: Session):
        self.db = db
        self.app_repo = AppRepository(db)
        self.file_repo = FileRepository(db)
        self.version_repo = VersionRepository(db)
        self.deployment_repo = DeploymentRepository(db)
        self.job_service = JobService(db)

    def deploy(
        self,
        app_id: int,
        environment: str,
        commit_sha: Optional[str] = None,
        deployed_version: Optional[str] = None,
        deployment_type: str = "manual",
    ) -> AppDeployment:
        """Record a pending deployment and hand it to the executor.

        The previous active deployment for the environment is marked
        superseded in the same transaction; the partial unique index turns
        a concurrent second deploy into DuplicateActiveDeploymentError.

        Raises:
            ValidationError: Unknown environment or an app with no files.
            DuplicateActiveDeploymentError: Lost a race with another deploy.
        """
        validate_environment(environment)
        app = self.app_repo.get_by_id(app_id)
        if self.file_repo.count_for_app(app_id) == 0:
            raise ValidationError("Cannot deploy an app with no files", field="app_id")

        if deployed_version is None:
            latest = self.version_repo.get_latest(app_id)
            deployed_version = latest.version_number if latest else None

        now = _now()
        previous = self.deployment_repo.get_active(app_id, environment)
        deployment = AppDeployment(
            app_id=app_id,
            environment=environment,
            status="pending",
            is_rollback=False,
            deployment_url=deployment_url(app, environment),
            commit_sha=commit_sha,
            deployed_version=deployed_version,
            deployment_metadata={
                "deployment_type": deployment_type,
                "requested_at": now.isoformat(),
                "app_obfuscated_id": app.obfuscated_id,
            },
        )

        try:
            if previous is not None:
                previous.superseded_at = now
                self.db.flush()
            self.db.add(deployment)
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(
                "Concurrent deploy rejected",
                extra={"app_id": app_id, "environment": environment},
            )
            raise DuplicateActiveDeploymentError(app_id, environment) from e

        if previous is not None:
            previous.superseded_by_id = deployment.id

        self._enqueue(deployment)
        self.db.commit()
        self.db.refresh(deployment)

        logger.info(
            f"Deployment {deployment.id} of app {app_id} to {environment} pending",
            extra={"app_id": app_id, "deployment_id": deployment.id, "superseded": previous.id if previous else None},
        )
        return deployment

    def rollback(
        self,
        app_id: int,
        target_deployment_id: int,
        environment: Optional[str] = None,
    ) -> AppDeployment:
        """Create a pending rollback row re-activating an original deployment.

        Raises:
            DeploymentNotFoundError: No such deployment.
            RollbackNotAllowedError: Target belongs elsewhere or is itself a rollback.
        """
        self.app_repo.get_by_id(app_id)
        target = self.deployment_repo.get_by_id(target_deployment_id)

        if target.app_id != app_id:
            raise RollbackNotAllowedError(target.id, "deployment belongs to another app")
        if environment is not None and environment != target.environment:
            validate_environment(environment)
            raise RollbackNotAllowedError(target.id, f"deployment is for {target.environment}, not {environment}")
        if not target.can_rollback:
            raise RollbackNotAllowedError(
                target.id, "rollback records cannot be rolled back; target the original deployment"
            )

        rollback = AppDeployment(
            app_id=app_id,
            environment=target.environment,
            status="pending",
            is_rollback=True,
            rollback_of_id=target.id,
            deployment_url=target.deployment_url,
            commit_sha=target.commit_sha,
            deployed_version=target.deployed_version,
            deployment_metadata={
                "deployment_type": "rollback",
                "rollback_to": target.id,
                "requested_at": _now().isoformat(),
            },
        )
        self.db.add(rollback)
        self.db.flush()
        self._enqueue(rollback)
        self.db.commit()
        self.db.refresh(rollback)

        logger.info(
            f"Rollback {rollback.id} of app {app_id} to deployment {target.id} pending",
            extra={"app_id": app_id, "deployment_id": rollback.id, "environment": target.environment},
        )
        return rollback

    def mark_outcome(
        self,
        deployment_id: int,
        status: str,
        deployed_version: Optional[str] = None,
        error_message: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> AppDeployment:
        """Move a pending deployment to success or failed.

        The transition is a conditional UPDATE on ``status = 'pending'``, so
        two executors reporting at once cannot both win.

        Raises:
            ValidationError: Status is not terminal.
            InvalidStateTransitionError: The deployment is no longer pending.
        """
        if status not in TERMINAL_STATUSES:
            raise ValidationError(
                f"Invalid outcome '{status}'. Must be one of: {', '.join(TERMINAL_STATUSES)}",
                field="status",
            )
        deployment = self.deployment_repo.get_by_id(deployment_id)

        values = {
            AppDeployment.status: status,
            AppDeployment.completed_at: _now(),
            AppDeployment.deployment_metadata: {**(deployment.deployment_metadata or {}), **(metadata or {})},
        }
        if deployed_version:
            values[AppDeployment.deployed_version] = deployed_version
        if status == "failed":
            values[AppDeployment.error_message] = error_message or "Deployment failed"

        updated = (
            self.db.query(AppDeployment)
            .filter(AppDeployment.id == deployment_id, AppDeployment.status == "pending")
            .update(values, synchronize_session=False)
        )
        if not updated:
            self.db.rollback()
            self.db.refresh(deployment)
            raise InvalidStateTransitionError(deployment.id, deployment.status, status)

        self.db.refresh(deployment)
        if self._current_row(deployment.app_id, deployment.environment) is deployment:
            self._update_app_status(deployment)
        self.db.commit()
        self.db.refresh(deployment)

        log = logger.info if status == "success" else logger.warning
        log(
            f"Deployment {deployment.id} {status}",
            extra={"deployment_id": deployment.id, "environment": deployment.environment,
                   "error": deployment.error_message},
        )
        return deployment

    def _update_app_status(self, deployment: AppDeployment) -> None:
        app = self.app_repo.get_by_id(deployment.app_id)
        fields = _APP_STATUS_FIELDS[deployment.environment]
        setattr(app, fields["status"], deployment.status)
        if deployment.status != "success":
            return
        setattr(app, fields["url"], deployment.deployment_url)
        setattr(app, fields["deployed_at"], deployment.completed_at)
        if "version" in fields:
            setattr(app, fields["version"], deployment.deployed_version)

    def _enqueue(self, deployment: AppDeployment) -> None:
        self.job_service.enqueue(
            "deployment",
            "deployment",
            deployment.id,
            payload={
                "app_id": deployment.app_id,
                "environment": deployment.environment,
                "is_rollback": deployment.is_rollback,
            },
            commit=False,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _current_row(self, app_id: int, environment: str) -> Optional[AppDeployment]:
        """Active row, unless a rollback was requested after it."""
        active = self.deployment_repo.get_active(app_id, environment)
        rollback = self.deployment_repo.get_latest_rollback(
            app_id, environment, after_id=active.id if active else 0
        )
        return rollback or active

    def current_status(self, app_id: int) -> DeploymentStatusResponse:
        """What is live where. Environments never deployed report not_deployed."""
        self.app_repo.get_by_id(app_id)
        statuses = {}
        for environment in ENVIRONMENTS:
            current = self._current_row(app_id, environment)
            if current is None:
                statuses[environment] = EnvironmentStatus(status="not_deployed")
                continue
            statuses[environment] = EnvironmentStatus(
                status=current.status,
                url=current.deployment_url,
                deployed_at=current.completed_at if current.status == "success" else None,
                version=current.deployed_version,
                deployment_id=current.id,
                is_rollback=bool(current.is_rollback),
                rolled_back_to=current.rollback_of_id,
                error_message=current.error_message,
            )
        return DeploymentStatusResponse(app_id=app_id, **statuses)

    def history(self, app_id: int, environment: Optional[str] = None, limit: int = 50) -> List[AppDeployment]:
        self.app_repo.get_by_id(app_id)
        if environment is not None:
            validate_environment(environment)
        return self.deployment_repo.history(app_id, environment, limit)

    def get_deployment(self, app_id: int, deployment_id: int) -> AppDeployment:
        return self.deployment_repo.get_in_app(app_id, deployment_id)
