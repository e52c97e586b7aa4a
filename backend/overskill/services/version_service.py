"""Version service: snapshots, restore and diff over an app's file set.

Every snapshot stores the full app state as a JSON manifest (tiered like
any other content) plus one ``AppVersionFile`` per changed path. Restore
writes the manifest back through the content store and records itself as
a new version; history is never rewritten.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..exceptions import (
    ContentIntegrityError,
    ContentRetrievalError,
    OverskillException,
    ValidationError,
    VersionConflictError,
)
from ..models import AppFile, AppVersion, AppVersionFile
from ..models.version import VERSION_FILE_ACTIONS
from ..repositories import AppRepository, FileRepository, VersionRepository
from ..schemas.version import (
    DiffResponse,
    FileDiff,
    LineChange,
    RestoreResponse,
    VersionResponse,
)
from ..storage import ObjectStorage, sha256_hex
from .content_store import ContentStoreService
from .display_name_service import DisplayNameService, fallback_display_name
from .tiering_service import TieringService

logger = logging.getLogger(__name__)

INITIAL_VERSION = "1.0.0"
MAX_ALLOCATION_ATTEMPTS = 3

_VERSION_PATTERN = re.compile(r"^\d+(\.\d+)*$")


def increment_version(version_number: str) -> str:
    """Bump the last dotted segment: "1.0.9" -> "1.0.10".

    Raises:
        ValidationError: If the version is not dotted non-negative integers.
    """
    if not version_number or not _VERSION_PATTERN.match(version_number):
        raise ValidationError(f"Malformed version number: {version_number!r}", field="version_number")
    parts = version_number.split(".")
    parts[-1] = str(int(parts[-1]) + 1)
    return ".".join(parts)


@dataclass
class ChangedFile:
    """One change captured by a snapshot."""
    path: str
    action: str
    content: str
    app_file_id: Optional[int] = None


def positional_diff(old: str, new: str) -> tuple[int, int, List[LineChange]]:
    """Compare two texts line by line at equal positions.

    Returns (additions, deletions, changes). A changed line counts as one
    deletion plus one addition.
    """
    old_lines = old.splitlines()
    new_lines = new.splitlines()
    additions = deletions = 0
    changes: List[LineChange] = []

    for index in range(max(len(old_lines), len(new_lines))):
        old_line = old_lines[index] if index < len(old_lines) else None
        new_line = new_lines[index] if index < len(new_lines) else None
        if old_line == new_line:
            continue
        if old_line is not None:
            deletions += 1
        if new_line is not None:
            additions += 1
        changes.append(LineChange(line=index + 1, old=old_line, new=new_line))

    return additions, deletions, changes


class VersionService:
    """Creates and restores version snapshots for an app."""

    def __init__(self, db: Session, object_store: Optional[ObjectStorage] = None):
        self.db = db
        self.object_store = object_store
        self.content_store = ContentStoreService(db, object_store)
        self.app_repo = AppRepository(db)
        self.file_repo = FileRepository(db)
        self.version_repo = VersionRepository(db)
        self.display_names = DisplayNameService()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_versions(self, app_id: int, skip: int = 0, limit: int = 50) -> List[AppVersion]:
        self.app_repo.get_by_id(app_id)
        return self.version_repo.list_for_app(app_id, skip, limit)

    def get_version(self, app_id: int, version_id: int) -> AppVersion:
        return self.version_repo.get_in_app(app_id, version_id)

    def get_version_files(self, app_id: int, version_id: int) -> List[AppVersionFile]:
        self.get_version(app_id, version_id)
        return self.version_repo.get_files(version_id)

    def read_manifest(self, version: AppVersion) -> List[dict]:
        """Full file set captured by a version, read from whichever tier holds it."""
        return json.loads(self.content_store.read(version))

    def next_version_number(self, app_id: int) -> str:
        latest = self.version_repo.get_latest(app_id)
        if latest is None:
            return INITIAL_VERSION
        return increment_version(latest.version_number)

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(
        self,
        app_id: int,
        changes: List[ChangedFile],
        changelog: Optional[str] = None,
        restored_from_id: Optional[int] = None,
        commit: bool = True,
    ) -> AppVersion:
        """Capture the app's current files as a new version.

        Version numbers are allocated under a row lock on the app and
        guarded by the (app_id, version_number) unique constraint; a
        collision retries allocation in a savepoint.

        Raises:
            ValidationError: Unknown action tag or malformed previous version.
            VersionConflictError: Allocation kept colliding.
        """
        for change in changes:
            if change.action not in VERSION_FILE_ACTIONS:
                raise ValidationError(f"Unknown version file action: {change.action}", field="action")

        self.db.flush()
        self.app_repo.get_for_update(app_id)

        manifest = self._build_manifest(app_id)
        manifest_json = json.dumps(manifest, ensure_ascii=False)

        version = self._allocate(app_id, manifest_json, len(manifest), changelog, restored_from_id)

        for change in changes:
            version_file = AppVersionFile(
                app_file_id=change.app_file_id,
                path=change.path,
                action=change.action,
            )
            version_file.version = version
            self.content_store.write(version_file, change.content)
            self.db.add(version_file)
        self.db.flush()

        # Placeholder until label_version runs outside the transaction.
        version.display_name = fallback_display_name((c.path, c.action) for c in changes)

        if commit:
            self.db.commit()
            self.db.refresh(version)
            self.label_version(version)

        logger.info(
            f"Created version {version.version_number} for app {app_id}",
            extra={"app_id": app_id, "version_id": version.id, "changed_files": len(changes)},
        )
        return version

    def _build_manifest(self, app_id: int) -> List[dict]:
        """Current file set, taking content from the newest manifest where possible.

        A file whose hash matches its entry in the previous version, or that
        keeps an inline copy, needs no object store read. Only content that
        exists nowhere else is fetched from R2.
        """
        previous: Dict[str, str] = {}
        head = self.version_repo.get_latest(app_id)
        if head is not None:
            previous = {entry["path"]: entry["content"] for entry in self._head_entries(head)}

        manifest = []
        for f in self.file_repo.list_for_app(app_id):
            content = previous.get(f.path)
            if content is None or sha256_hex(content) != f.content_hash:
                content = self.content_store.inline_copy(f)
            if content is None:
                content = self.content_store.read(f)
            manifest.append({
                "path": f.path,
                "content": content,
                "file_type": f.file_type,
                "content_hash": f.content_hash,
            })
        return manifest

    def _head_entries(self, head: AppVersion) -> List[dict]:
        try:
            return self.read_manifest(head)
        except (ContentRetrievalError, ContentIntegrityError) as e:
            logger.warning(
                "Previous manifest unavailable; reading live files instead",
                extra={"version_id": head.id, "error": e.message},
            )
            return []

    def label_version(self, version: AppVersion) -> None:
        """Replace the placeholder display name with a generated one.

        Call after commit. The session's transaction is ended before the
        model is called so no row lock or read snapshot is held meanwhile.
        """
        if not self.display_names.is_configured():
            return
        version_id = version.id
        changes = [(vf.path, vf.action) for vf in version.version_files]
        changelog = version.changelog
        placeholder = version.display_name
        self.db.commit()

        label = self.display_names.label(changes, changelog, version_id=version_id)
        if label == placeholder:
            return
        self.db.query(AppVersion).filter(AppVersion.id == version_id).update(
            {AppVersion.display_name: label}, synchronize_session=False
        )
        self.db.commit()
        self.db.refresh(version)

    def _allocate(
        self,
        app_id: int,
        manifest_json: str,
        file_count: int,
        changelog: Optional[str],
        restored_from_id: Optional[int],
    ) -> AppVersion:
        for attempt in range(1, MAX_ALLOCATION_ATTEMPTS + 1):
            number = self.next_version_number(app_id)
            savepoint = self.db.begin_nested()
            try:
                version = AppVersion(
                    app_id=app_id,
                    version_number=number,
                    changelog=changelog,
                    restored_from_id=restored_from_id,
                    file_count=file_count,
                )
                self.content_store.write(version, manifest_json)
                self.db.add(version)
                self.db.flush()
                savepoint.commit()
                return version
            except IntegrityError:
                savepoint.rollback()
                logger.warning(
                    f"Version number {number} already taken for app {app_id} (attempt {attempt})",
                    extra={"app_id": app_id, "version_number": number},
                )
        raise VersionConflictError(app_id, MAX_ALLOCATION_ATTEMPTS)

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore(self, app_id: int, version_id: int, commit: bool = True) -> RestoreResponse:
        """Bring the app's files back to a version's state as a new version.

        Every file in the version's manifest is rewritten through the
        content store (recreated when missing); files the version recorded
        as deleted are removed. Live files the version never knew about are
        kept. Paths that fail are reported, not raised.
        """
        target = self.get_version(app_id, version_id)
        manifest = self.read_manifest(target)

        changes: List[ChangedFile] = []
        failed_paths: List[str] = []
        written: List[AppFile] = []
        discarded_keys: List[str] = []

        for entry in manifest:
            path = entry["path"]
            savepoint = self.db.begin_nested()
            try:
                file = self.file_repo.get_by_path(app_id, path)
                if file is None:
                    file = AppFile(app_id=app_id, path=path, file_type=entry.get("file_type") or "text")
                    self.db.add(file)
                self.content_store.write(file, entry["content"])
                self.db.flush()
                savepoint.commit()
            except (OverskillException, IntegrityError) as e:
                savepoint.rollback()
                logger.warning(
                    "Could not restore file",
                    extra={"app_id": app_id, "path": path, "error": str(e)},
                )
                failed_paths.append(path)
                continue
            written.append(file)
            changes.append(ChangedFile(path, "restored", entry["content"], file.id))

        restored_paths = {entry["path"] for entry in manifest}
        for version_file in self.version_repo.get_files(target.id):
            if version_file.action != "deleted" or version_file.path in restored_paths:
                continue
            file = self.file_repo.get_by_path(app_id, version_file.path)
            if file is None:
                continue
            savepoint = self.db.begin_nested()
            try:
                content = self.content_store.read(file)
                if file.object_key:
                    discarded_keys.append(file.object_key)
                self.db.delete(file)
                self.db.flush()
                savepoint.commit()
            except OverskillException as e:
                savepoint.rollback()
                logger.warning(
                    "Could not remove file deleted in restored version",
                    extra={"app_id": app_id, "path": version_file.path, "error": e.message},
                )
                failed_paths.append(version_file.path)
                continue
            changes.append(ChangedFile(version_file.path, "deleted", content))

        new_version = self.snapshot(
            app_id,
            changes,
            changelog=f"Restored from version {target.version_number}",
            restored_from_id=target.id,
            commit=False,
        )

        if commit:
            self.db.commit()
            self.db.refresh(new_version)
            for key in discarded_keys:
                self.content_store.discard_object(key)
            self.content_store.discard_pending()

            tiering = TieringService(self.db, self.object_store)
            for file in written:
                tiering.schedule_promotion(file)
            self.label_version(new_version)

        logger.info(
            f"Restored app {app_id} to version {target.version_number} as {new_version.version_number}",
            extra={"app_id": app_id, "restored": len(written), "failed": len(failed_paths)},
        )
        return RestoreResponse(
            version=VersionResponse.model_validate(new_version),
            restored_count=len(written),
            failed_paths=failed_paths,
        )

    # ------------------------------------------------------------------
    # Diff
    # ------------------------------------------------------------------

    def diff(self, app_id: int, from_version_id: int, to_version_id: int) -> DiffResponse:
        """Per-path changes going from one version to another.

        Paths present only in ``to`` are created, only in ``from`` deleted,
        and in both with different content updated. Sorted by path.
        """
        from_version = self.get_version(app_id, from_version_id)
        to_version = self.get_version(app_id, to_version_id)

        old_files: Dict[str, str] = {e["path"]: e["content"] for e in self.read_manifest(from_version)}
        new_files: Dict[str, str] = {e["path"]: e["content"] for e in self.read_manifest(to_version)}

        files: List[FileDiff] = []
        for path in sorted(set(old_files) | set(new_files)):
            old = old_files.get(path)
            new = new_files.get(path)
            if old == new:
                continue
            if old is None:
                status = "created"
            elif new is None:
                status = "deleted"
            else:
                status = "updated"
            additions, deletions, changes = positional_diff(old or "", new or "")
            files.append(FileDiff(
                path=path,
                status=status,
                additions=additions,
                deletions=deletions,
                changes=changes,
            ))

        return DiffResponse(
            from_version=from_version.version_number,
            to_version=to_version.version_number,
            files=files,
            total_additions=sum(f.additions for f in files),
            total_deletions=sum(f.deletions for f in files),
        )
