"""Content store: one logical content value per record, wherever its bytes live.

Works on every record carrying the tiered content columns (live files,
version manifests, version files). Writes always land inline; promotion
to the object store happens later through ``migrate_to_tier``, which
uploads, re-reads and hash-checks before touching the record.
"""

import logging
from types import SimpleNamespace
from typing import List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from ..core.config import settings
from ..exceptions import (
    ContentIntegrityError,
    ContentRetrievalError,
    MigrationError,
    ObjectStoreError,
    StaleContentError,
    ValidationError,
)
from ..models import App, AppFile, AppVersion, AppVersionFile
from ..storage import (
    ContentCache,
    Hybrid,
    Inline,
    ObjectStorage,
    ObjectStore,
    StorageTier,
    apply_location,
    content_cache,
    location_of,
    sha256_hex,
    tier_of,
)
from ..storage.object_store import (
    content_type_for,
    file_object_key,
    snapshot_object_key,
    version_file_object_key,
)

logger = logging.getLogger(__name__)


def plan_tier(size_bytes: int) -> StorageTier:
    """Tier a record of this size belongs at once tiering is enabled."""
    if size_bytes <= settings.inline_max_bytes:
        return StorageTier.INLINE
    if size_bytes <= settings.hybrid_max_bytes:
        return StorageTier.HYBRID
    return StorageTier.OBJECT_STORE


class ContentStoreService:
    """Read, write, migrate and verify tiered content."""

    def __init__(
        self,
        db: Session,
        object_store: Optional[ObjectStorage] = None,
        cache: Optional[ContentCache] = None,
    ):
        self.db = db
        self.object_store = object_store
        self.cache = cache if cache is not None else content_cache
        # Objects orphaned by writes in the current transaction
        self.pending_discards: List[str] = []

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def tiering_enabled(self, app: App) -> bool:
        """Feature flag on, R2 reachable and the app has not opted out."""
        return bool(
            settings.r2_storage_enabled
            and self.object_store is not None
            and app.r2_storage_enabled
        )

    @staticmethod
    def plan_tier(size_bytes: int) -> StorageTier:
        return plan_tier(size_bytes)

    def object_key_for(self, record) -> str:
        if isinstance(record, AppFile):
            return file_object_key(record.app_id, record.path, record.content_hash)
        if isinstance(record, AppVersion):
            return snapshot_object_key(record.app_id, record.id)
        if isinstance(record, AppVersionFile):
            return version_file_object_key(record.version.app_id, record.app_version_id, record.path)
        raise TypeError(f"Not a tiered record: {type(record).__name__}")

    @staticmethod
    def _content_type_for(record) -> str:
        if isinstance(record, AppVersion):
            return "application/json"
        return content_type_for(record.path)

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    def read(self, record) -> str:
        """Return the record's content from whichever tier holds it.

        Hybrid records prefer the object store and fall back to the inline
        copy. Object-store-only records have no fallback.

        Raises:
            ContentRetrievalError: No tier could produce valid content.
            ContentIntegrityError: Tier columns disagree with the recorded tier.
        """
        location = location_of(record)

        if isinstance(location, Inline):
            return location.content

        if isinstance(location, Hybrid):
            try:
                return self._fetch(location.key, record.content_hash)
            except (ObjectStoreError, ContentIntegrityError) as e:
                logger.warning(
                    "Object store read failed, serving inline copy",
                    extra=self._log_fields(record, location.key, error=e.message),
                )
                return location.content

        try:
            return self._fetch(location.key, record.content_hash)
        except (ObjectStoreError, ContentIntegrityError) as e:
            logger.error(
                "Object store read failed with no inline fallback",
                extra=self._log_fields(record, location.key, error=e.message),
            )
            raise ContentRetrievalError(
                f"Content for {type(record).__name__} {record.id} is unavailable",
                details={"object_key": location.key, "reason": e.message},
            ) from e

    def write(self, record, content: Optional[str]):
        """Store new content inline and refresh hash and size.

        Any object-store copy becomes stale: its key is cleared, its cache
        entry dropped and the object queued for ``discard_pending`` once
        the caller has committed. Version records only accept their first
        write.

        Raises:
            ValidationError: Empty content, or a rewrite of version content.
        """
        if content is None or content == "":
            raise ValidationError(
                "Content must not be empty; delete the file to remove it",
                field="content",
            )
        if isinstance(record, (AppVersion, AppVersionFile)) and record.content_hash:
            raise ValidationError(
                f"{type(record).__name__} {record.id} is immutable; its content cannot be rewritten",
                field="content",
            )

        stale_key = record.object_key
        record.content_hash = sha256_hex(content)
        record.size_bytes = len(content.encode("utf-8"))
        apply_location(record, Inline(content))
        if stale_key:
            self.cache.invalidate(stale_key)
            self.pending_discards.append(stale_key)
        return record

    def inline_copy(self, record) -> Optional[str]:
        """The database copy of the content, or None for object-store-only records."""
        location = location_of(record)
        if isinstance(location, ObjectStore):
            return None
        return location.content

    def _fetch(self, key: str, expected_hash: str) -> str:
        """Cached, hash-checked object-store read."""
        data = self.cache.get(key, expected_hash)
        if data is None:
            data = self._fetch_verified(key, expected_hash)
            self.cache.set(key, expected_hash, data)
        return data.decode("utf-8")

    def _fetch_verified(self, key: str, expected_hash: str) -> bytes:
        """Uncached object-store read that must match ``expected_hash``."""
        if self.object_store is None:
            raise ObjectStoreError("Object store is not configured", object_key=key)
        data = self.object_store.get(key)
        if sha256_hex(data) != expected_hash:
            raise ContentIntegrityError(
                f"Hash mismatch for object {key}",
                details={"object_key": key, "expected_hash": expected_hash},
            )
        try:
            data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ContentIntegrityError(f"Object {key} is not valid UTF-8", details={"object_key": key}) from e
        return data

    # ------------------------------------------------------------------
    # Tier migration
    # ------------------------------------------------------------------

    def migrate_to_tier(self, record, target):
        """Move a record to ``target`` tier, verify-then-commit.

        New column values are computed first and written only after the
        object-store copy has been re-read and hash-checked. The write is a
        conditional UPDATE on the hash and tier seen at load time, so a
        write committed meanwhile by another session is never overwritten.
        Moving to the current tier is a no-op, so retries are safe.

        Raises:
            MigrationError: Upload, re-read or verification failed. The
                record keeps its previous tier.
            StaleContentError: The row changed after it was loaded. The
                caller should drop this migration.
        """
        target = StorageTier(target)
        self.db.flush()
        location = location_of(record)
        current = tier_of(location)
        if current == target:
            return record

        uploaded_key = None
        if target == StorageTier.INLINE:
            new_location = Inline(self._content_for_demotion(record, location))
        else:
            content = self._content_for_promotion(record, location)
            if isinstance(location, Inline):
                key = self.object_key_for(record)
                self._upload_verified(record, key, content)
                uploaded_key = key
            else:
                key = location.key
                # hybrid -> object_store drops the inline copy, so the
                # stored copy must be proven good first
                if isinstance(location, Hybrid) and not self._stored_copy_matches(key, record.content_hash):
                    self._upload_verified(record, key, content)
            if target == StorageTier.HYBRID:
                new_location = Hybrid(content, key)
            else:
                new_location = ObjectStore(key)

        old_key = record.object_key
        try:
            self._commit_location(record, new_location, current)
        except StaleContentError:
            if uploaded_key:
                self.pending_discards.append(uploaded_key)
            raise
        for key in {old_key, record.object_key} - {None}:
            self.cache.invalidate(key)
        logger.info(
            "Migrated content tier",
            extra={**self._log_fields(record, record.object_key), "from_tier": current.value},
        )
        return record

    def _commit_location(self, record, location, loaded_tier: StorageTier) -> None:
        """Write the new tier columns only if the row still holds the loaded content."""
        model = type(record)
        columns = SimpleNamespace()
        apply_location(columns, location)

        updated = (
            self.db.query(model)
            .filter(
                model.id == record.id,
                model.content_hash == record.content_hash,
                model.storage_location == loaded_tier.value,
            )
            .update(
                {
                    model.content: columns.content,
                    model.object_key: columns.object_key,
                    model.storage_location: columns.storage_location,
                },
                synchronize_session=False,
            )
        )
        if not updated:
            logger.warning(
                "Tier migration dropped: record changed since it was loaded",
                extra=self._log_fields(record, record.object_key),
            )
            raise StaleContentError(model.__name__, record.id)

        for name in ("content", "object_key", "storage_location"):
            set_committed_value(record, name, getattr(columns, name))

    def _content_for_promotion(self, record, location) -> str:
        """Content to place in the object store, hash-checked."""
        if isinstance(location, ObjectStore):
            # object_store -> hybrid: bring a verified copy back inline
            try:
                return self._fetch_verified(location.key, record.content_hash).decode("utf-8")
            except (ObjectStoreError, ContentIntegrityError) as e:
                raise self._migration_error(record, "could not read object-store copy", e) from e

        if sha256_hex(location.content) != record.content_hash:
            raise self._migration_error(
                record,
                "inline content does not match recorded hash",
                ContentIntegrityError("Inline hash mismatch"),
            )
        return location.content

    def _content_for_demotion(self, record, location) -> str:
        """Content to keep inline when leaving the object store."""
        try:
            return self._fetch_verified(location.key, record.content_hash).decode("utf-8")
        except (ObjectStoreError, ContentIntegrityError) as e:
            if isinstance(location, Hybrid) and sha256_hex(location.content) == record.content_hash:
                logger.warning(
                    "Object store copy unusable, keeping verified inline copy",
                    extra=self._log_fields(record, location.key, error=e.message),
                )
                return location.content
            raise self._migration_error(record, "could not read object-store copy", e) from e

    def _stored_copy_matches(self, key: str, expected_hash: str) -> bool:
        """True when the key already holds the expected bytes (retried migration)."""
        if self.object_store is None:
            return False
        try:
            self._fetch_verified(key, expected_hash)
            return True
        except (ObjectStoreError, ContentIntegrityError):
            return False

    def _upload_verified(self, record, key: str, content: str) -> None:
        """Upload then re-read straight from the store and compare hashes."""
        if self.object_store is None:
            raise self._migration_error(
                record, "object store is not configured", ObjectStoreError("Object store is not configured")
            )
        try:
            self.object_store.put(key, content.encode("utf-8"), self._content_type_for(record))
            self._fetch_verified(key, record.content_hash)
        except (ObjectStoreError, ContentIntegrityError) as e:
            raise self._migration_error(record, "upload verification failed", e) from e
        finally:
            self.cache.invalidate(key)

    def _migration_error(self, record, reason: str, cause) -> MigrationError:
        message = getattr(cause, "message", str(cause))
        logger.error(
            f"Tier migration aborted: {reason}",
            extra=self._log_fields(record, record.object_key, error=message),
        )
        return MigrationError(
            f"Migration of {type(record).__name__} {record.id} aborted: {reason}",
            details={"record_id": record.id, "reason": message},
        )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self, record) -> dict:
        """Recompute SHA-256 from raw bytes at every populated tier.

        Bypasses the read cache.
        """
        location = location_of(record)
        report = {
            "storage_location": tier_of(location).value,
            "content_hash": record.content_hash,
            "inline_ok": None,
            "object_store_ok": None,
            "object_store_error": None,
        }

        if isinstance(location, (Inline, Hybrid)):
            report["inline_ok"] = sha256_hex(location.content) == record.content_hash

        if isinstance(location, (ObjectStore, Hybrid)):
            if self.object_store is None:
                report["object_store_ok"] = False
                report["object_store_error"] = "Object store is not configured"
            else:
                try:
                    data = self.object_store.get(location.key)
                    report["object_store_ok"] = sha256_hex(data) == record.content_hash
                except ObjectStoreError as e:
                    report["object_store_ok"] = False
                    report["object_store_error"] = e.message

        report["valid"] = all(v is not False for v in (report["inline_ok"], report["object_store_ok"]))
        if not report["valid"]:
            logger.warning("Content verification failed", extra=self._log_fields(record, record.object_key))
        return report

    def discard_object(self, key: Optional[str]) -> None:
        """Remove an object whose owning record is gone.

        A leftover object is harmless: every key is derived from an id or a
        content hash, so it can only ever be rewritten with the same bytes.
        """
        if not key:
            return
        self.cache.invalidate(key)
        if self.object_store is None:
            return
        try:
            self.object_store.delete(key)
        except ObjectStoreError as e:
            logger.warning("Could not delete orphaned object", extra={"object_key": key, "error": e.message})

    def discard_pending(self) -> None:
        """Delete objects orphaned by committed writes.

        Call after commit. A key some row points at again (the same content
        promoted since) is kept.
        """
        keys, self.pending_discards = self.pending_discards, []
        for key in keys:
            if self.db.query(AppFile.id).filter(AppFile.object_key == key).first() is not None:
                continue
            self.discard_object(key)

    @staticmethod
    def _log_fields(record, key: Optional[str], error: Optional[str] = None) -> dict:
        fields = {
            "record_type": type(record).__name__,
            "record_id": record.id,
            "object_key": key,
            "tier": record.storage_location,
        }
        if error:
            fields["error"] = error
        return fields
