"""Repository for apps."""

from typing import List

from .base import BaseRepository
from ..models import App
from ..exceptions import AppNotFoundError


class AppRepository(BaseRepository[App]):
    model_class = App
    not_found_error = AppNotFoundError

    def get_for_update(self, app_id: int) -> App:
        """Load the app row under a row lock for the rest of the transaction.

        Serializes version-number allocation per app. SQLite ignores
        FOR UPDATE; its database-level write lock does the same job.
        """
        app = (
            self.db.query(App)
            .filter(App.id == app_id)
            .with_for_update()
            .first()
        )
        if app is None:
            raise AppNotFoundError(app_id)
        return app

    def list_apps(self, skip: int = 0, limit: int = 100) -> List[App]:
        return self.db.query(App).order_by(App.id.asc()).offset(skip).limit(limit).all()
