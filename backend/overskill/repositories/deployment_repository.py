"""Repository for the deployment log."""

from typing import List, Optional

from .base import BaseRepository
from ..models import AppDeployment
from ..exceptions import DeploymentNotFoundError


class DeploymentRepository(BaseRepository[AppDeployment]):
    model_class = AppDeployment
    not_found_error = DeploymentNotFoundError

    def get_active(self, app_id: int, environment: str) -> Optional[AppDeployment]:
        """The non-rollback, non-superseded row for an environment."""
        return (
            self.db.query(AppDeployment)
            .filter(
                AppDeployment.app_id == app_id,
                AppDeployment.environment == environment,
                AppDeployment.is_rollback.is_(False),
                AppDeployment.superseded_at.is_(None),
            )
            .first()
        )

    def get_latest_rollback(
        self, app_id: int, environment: str, after_id: int = 0
    ) -> Optional[AppDeployment]:
        """Newest rollback row for an environment created after ``after_id``."""
        return (
            self.db.query(AppDeployment)
            .filter(
                AppDeployment.app_id == app_id,
                AppDeployment.environment == environment,
                AppDeployment.is_rollback.is_(True),
                AppDeployment.id > after_id,
            )
            .order_by(AppDeployment.id.desc())
            .first()
        )

    def history(
        self, app_id: int, environment: Optional[str] = None, limit: int = 50
    ) -> List[AppDeployment]:
        """Deployment log, newest first."""
        query = self.db.query(AppDeployment).filter(AppDeployment.app_id == app_id)
        if environment:
            query = query.filter(AppDeployment.environment == environment)
        return query.order_by(AppDeployment.id.desc()).limit(limit).all()
