"""App lifecycle: creation with shard assignment, lookup and deletion."""

import logging
import re
import secrets
from typing import List

from sqlalchemy.orm import Session

from ..exceptions import ValidationError
from ..models import App, AppFile, AppVersion, AppVersionFile
from ..repositories import AppRepository
from ..schemas.app import AppCreate
from ..storage import ObjectStorage
from .content_store import ContentStoreService
from .shard_service import ShardService

logger = logging.getLogger(__name__)

# Slugs end up in deployment hostnames.
_SLUG_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?$")
MAX_SLUG_LENGTH = 40


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug[:MAX_SLUG_LENGTH].rstrip("-") or "app"


class AppService:
    """Creates and deletes apps."""

    def __init__(self, db: Session, object_store: ObjectStorage = None):
        self.db = db
        self.app_repo = AppRepository(db)
        self.shard_service = ShardService(db)
        self.content_store = ContentStoreService(db, object_store)

    def create_app(self, data: AppCreate) -> App:
        """Create an app and assign its shard in one transaction."""
        if data.slug is not None:
            slug = data.slug.lower()
            if len(slug) > MAX_SLUG_LENGTH or not _SLUG_PATTERN.match(slug):
                raise ValidationError(
                    "Slug must be lowercase letters, digits and hyphens, "
                    f"not starting or ending with a hyphen, at most {MAX_SLUG_LENGTH} characters",
                    field="slug",
                )
        else:
            slug = slugify(data.name)

        app = App(
            name=data.name,
            slug=slug,
            obfuscated_id=self._new_obfuscated_id(),
            r2_storage_enabled=data.r2_storage_enabled,
        )
        self.db.add(app)
        self.db.flush()
        self.shard_service.assign_shard(app)
        self.db.commit()
        self.db.refresh(app)

        logger.info(f"Created app {app.id} ({app.slug})", extra={"app_id": app.id})
        return app

    def _new_obfuscated_id(self) -> str:
        while True:
            candidate = secrets.token_hex(4)
            if not self.db.query(App.id).filter(App.obfuscated_id == candidate).first():
                return candidate

    def get_app(self, app_id: int) -> App:
        return self.app_repo.get_by_id(app_id)

    def list_apps(self, skip: int = 0, limit: int = 100) -> List[App]:
        return self.app_repo.list_apps(skip, limit)

    def delete_app(self, app_id: int) -> None:
        """Delete an app with its files, versions and deployments.

        Objects in R2 are removed after the database commit.
        """
        app = self.app_repo.get_by_id(app_id)

        keys = [k for (k,) in self.db.query(AppFile.object_key).filter(
            AppFile.app_id == app_id, AppFile.object_key.isnot(None))]
        keys += [k for (k,) in self.db.query(AppVersion.object_key).filter(
            AppVersion.app_id == app_id, AppVersion.object_key.isnot(None))]
        keys += [k for (k,) in (
            self.db.query(AppVersionFile.object_key)
            .join(AppVersion, AppVersionFile.app_version_id == AppVersion.id)
            .filter(AppVersion.app_id == app_id, AppVersionFile.object_key.isnot(None))
        )]

        self.db.delete(app)
        self.db.commit()
        logger.info(f"Deleted app {app_id}", extra={"app_id": app_id, "objects": len(keys)})

        for key in keys:
            self.content_store.discard_object(key)
