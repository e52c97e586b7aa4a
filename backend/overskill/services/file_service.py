"""File service: the editor-facing write path.

Writes land inline through the content store, are optionally captured in
a version, and only then is background promotion to R2 requested.
"""

import logging
import posixpath
from typing import List, Optional

from sqlalchemy.orm import Session

from ..exceptions import ValidationError
from ..models import AppFile, BackgroundJob
from ..repositories import AppRepository, FileRepository
from ..schemas.file import FileBatchWrite, FileChange, FileWrite, FileWriteResponse, FileResponse
from ..schemas.version import VersionResponse
from ..storage import ObjectStorage, sha256_hex
from .content_store import ContentStoreService
from .tiering_service import TieringService
from .version_service import ChangedFile, VersionService

logger = logging.getLogger(__name__)

_FILE_TYPES = {
    ".html": "html", ".htm": "html",
    ".js": "javascript", ".mjs": "javascript", ".jsx": "javascript",
    ".ts": "typescript", ".tsx": "typescript",
    ".css": "css",
    ".json": "json",
    ".md": "markdown",
    ".svg": "svg",
}


def infer_file_type(path: str) -> str:
    return _FILE_TYPES.get(posixpath.splitext(path)[1].lower(), "text")


def normalize_path(path: str) -> str:
    """Relative POSIX path without dot segments.

    Raises:
        ValidationError: For empty paths or paths escaping the app root.
    """
    cleaned = posixpath.normpath(path.strip().replace("\\", "/")).lstrip("/")
    if not cleaned or cleaned == "." or cleaned.startswith(".."):
        raise ValidationError(f"Invalid file path: {path!r}", field="path")
    return cleaned


class FileService:
    """Reads and writes live app files."""

    def __init__(self, db: Session, object_store: Optional[ObjectStorage] = None):
        self.db = db
        self.app_repo = AppRepository(db)
        self.file_repo = FileRepository(db)
        self.content_store = ContentStoreService(db, object_store)
        self.version_service = VersionService(db, object_store)
        self.tiering = TieringService(db, object_store)

    def list_files(self, app_id: int) -> List[AppFile]:
        self.app_repo.get_by_id(app_id)
        return self.file_repo.list_for_app(app_id)

    def get_file(self, app_id: int, file_id: int) -> AppFile:
        return self.file_repo.get_in_app(app_id, file_id)

    def read_content(self, file: AppFile) -> str:
        return self.content_store.read(file)

    def write_file(self, app_id: int, data: FileWrite) -> FileWriteResponse:
        """Write one file; snapshot it unless ``data.snapshot`` is False."""
        change = FileChange(path=data.path, action="write", content=data.content, file_type=data.file_type)
        return self._apply(app_id, [change], data.changelog, take_snapshot=data.snapshot)

    def write_batch(self, app_id: int, data: FileBatchWrite) -> FileWriteResponse:
        """Apply several changes atomically, recorded as a single version."""
        return self._apply(app_id, data.changes, data.changelog, take_snapshot=True)

    def delete_file(self, app_id: int, file_id: int, snapshot: bool = True) -> FileWriteResponse:
        file = self.file_repo.get_in_app(app_id, file_id)
        change = FileChange(path=file.path, action="delete")
        return self._apply(app_id, [change], None, take_snapshot=snapshot)

    def _apply(
        self,
        app_id: int,
        changes: List[FileChange],
        changelog: Optional[str],
        take_snapshot: bool,
    ) -> FileWriteResponse:
        self.app_repo.get_by_id(app_id)

        seen = set()
        recorded: List[ChangedFile] = []
        touched: List[AppFile] = []
        written: List[AppFile] = []
        deleted_paths: List[str] = []
        discarded_keys: List[str] = []

        for change in changes:
            path = normalize_path(change.path)
            if path in seen:
                raise ValidationError(f"Path appears twice in one write: {path}", field="path")
            seen.add(path)

            existing = self.file_repo.get_by_path(app_id, path)

            if change.action == "delete":
                if existing is None:
                    raise ValidationError(f"Cannot delete missing file: {path}", field="path")
                last_content = self.content_store.read(existing)
                if existing.object_key:
                    discarded_keys.append(existing.object_key)
                self.db.delete(existing)
                deleted_paths.append(path)
                recorded.append(ChangedFile(path, "deleted", last_content))
                continue

            if existing is None:
                file = AppFile(
                    app_id=app_id,
                    path=path,
                    file_type=change.file_type or infer_file_type(path),
                )
                self.content_store.write(file, change.content)
                self.db.add(file)
                action = "created"
            else:
                file = existing
                if change.file_type:
                    file.file_type = change.file_type
                if change.content and sha256_hex(change.content) == existing.content_hash:
                    # Same bytes: no new version, tier left as is
                    touched.append(file)
                    continue
                self.content_store.write(file, change.content)
                action = "updated"

            self.db.flush()
            touched.append(file)
            written.append(file)
            recorded.append(ChangedFile(path, action, change.content, file.id))

        self.db.flush()
        version = None
        if take_snapshot and recorded:
            version = self.version_service.snapshot(app_id, recorded, changelog=changelog, commit=False)

        self.db.commit()
        for key in discarded_keys:
            self.content_store.discard_object(key)
        self.content_store.discard_pending()

        for file in touched:
            self.db.refresh(file)
        jobs: List[BackgroundJob] = []
        for file in written:
            job = self.tiering.schedule_promotion(file)
            if job is not None:
                jobs.append(job)
        if version is not None:
            self.version_service.label_version(version)

        logger.info(
            f"Applied {len(recorded)} file change(s) to app {app_id}",
            extra={"app_id": app_id, "version_id": version.id if version else None},
        )
        return FileWriteResponse(
            files=[FileResponse.model_validate(f) for f in touched],
            deleted_paths=deleted_paths,
            version=VersionResponse.model_validate(version) if version else None,
            scheduled_jobs=[job.id for job in jobs],
        )

    def migrate_file(self, app_id: int, file_id: int, target_tier: str) -> AppFile:
        """Synchronously move one file between tiers (operator action)."""
        file = self.file_repo.get_in_app(app_id, file_id)
        self.content_store.migrate_to_tier(file, target_tier)
        file.sync_status = "synced"
        file.sync_error = None
        self.db.commit()
        self.db.refresh(file)
        return file

    def verify_file(self, app_id: int, file_id: int) -> dict:
        file = self.file_repo.get_in_app(app_id, file_id)
        return self.content_store.verify(file)
