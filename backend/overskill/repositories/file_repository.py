"""Repository for live app files."""

from typing import List, Optional

from .base import BaseRepository
from ..models import AppFile
from ..exceptions import FileNotFoundInAppError


class FileRepository(BaseRepository[AppFile]):
    model_class = AppFile
    not_found_error = FileNotFoundInAppError

    def get_by_path(self, app_id: int, path: str) -> Optional[AppFile]:
        return (
            self.db.query(AppFile)
            .filter(AppFile.app_id == app_id, AppFile.path == path)
            .first()
        )

    def list_for_app(self, app_id: int) -> List[AppFile]:
        return (
            self.db.query(AppFile)
            .filter(AppFile.app_id == app_id)
            .order_by(AppFile.path.asc())
            .all()
        )

    def count_for_app(self, app_id: int) -> int:
        return self.db.query(AppFile).filter(AppFile.app_id == app_id).count()
