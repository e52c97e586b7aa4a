"""Repository for version snapshots."""

from typing import List, Optional

from .base import BaseRepository
from ..models import AppVersion, AppVersionFile
from ..exceptions import VersionNotFoundError


class VersionRepository(BaseRepository[AppVersion]):
    model_class = AppVersion
    not_found_error = VersionNotFoundError

    def get_latest(self, app_id: int) -> Optional[AppVersion]:
        """Most recently created version. Ids grow with creation order."""
        return (
            self.db.query(AppVersion)
            .filter(AppVersion.app_id == app_id)
            .order_by(AppVersion.id.desc())
            .first()
        )

    def list_for_app(self, app_id: int, skip: int = 0, limit: int = 50) -> List[AppVersion]:
        """Versions newest first."""
        return (
            self.db.query(AppVersion)
            .filter(AppVersion.app_id == app_id)
            .order_by(AppVersion.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def get_files(self, version_id: int) -> List[AppVersionFile]:
        return (
            self.db.query(AppVersionFile)
            .filter(AppVersionFile.app_version_id == version_id)
            .order_by(AppVersionFile.path.asc())
            .all()
        )
