"""Background promotion of large content to the object store, plus admin sweeps."""

import logging
from typing import Callable, Iterable, List, Optional, Type, Union

from sqlalchemy.orm import Session

from ..core.config import settings
from ..exceptions import ObjectStoreError, OverskillException, StaleContentError, ValidationError
from ..models import AppFile, AppVersion, AppVersionFile, BackgroundJob
from ..schemas.storage import BatchError, BatchResult, MigrationPlan, SizeBreakdown
from ..storage import ObjectStorage, StorageTier
from .content_store import ContentStoreService, plan_tier
from .job_service import JobService

logger = logging.getLogger(__name__)

# Monthly price per GB used for savings estimates.
R2_COST_PER_GB = 0.015
DATABASE_COST_PER_GB = 2.0
BYTES_PER_GB = 1024 ** 3

STRATEGIES = ("conservative", "aggressive", "large_only", "all")

_TARGET_MODELS = {
    "file": AppFile,
    "version": AppVersion,
    "version_file": AppVersionFile,
}
_TARGET_TYPES = {model: name for name, model in _TARGET_MODELS.items()}


def strategy_min_bytes(strategy: str) -> int:
    """Files strictly larger than this are swept under ``strategy``."""
    if strategy == "conservative":
        return settings.inline_max_bytes
    if strategy == "aggressive":
        return 500
    if strategy == "large_only":
        return settings.hybrid_max_bytes
    if strategy == "all":
        return 0
    raise ValidationError(f"Unknown migration strategy: {strategy}", field="strategy")


def promotion_target(size_bytes: int) -> StorageTier:
    """Planned tier, but never inline: a swept record always leaves the database."""
    tier = plan_tier(size_bytes)
    return StorageTier.HYBRID if tier == StorageTier.INLINE else tier


def monthly_savings(total_bytes: int) -> float:
    return round(total_bytes / BYTES_PER_GB * (DATABASE_COST_PER_GB - R2_COST_PER_GB), 6)


class TieringService:
    """
    Moves tiered content between the database and R2.

    Request handlers only ever enqueue work here; the worker and the
    storage admin endpoints run the migrations.
    """

    def __init__(self, db: Session, object_store: Optional[ObjectStorage] = None):
        self.db = db
        self.content_store = ContentStoreService(db, object_store)
        self.job_service = JobService(db)

    # ------------------------------------------------------------------
    # Per-record promotion
    # ------------------------------------------------------------------

    def schedule_promotion(self, file: AppFile, commit: bool = True) -> Optional[BackgroundJob]:
        """Enqueue a tier migration for a freshly written file if it outgrew inline.

        Returns None when tiering is off for the app or the file is small.
        """
        if not self.content_store.tiering_enabled(file.app):
            return None
        target = plan_tier(file.size_bytes)
        if target == StorageTier.INLINE:
            return None
        return self.job_service.enqueue(
            "tier_migration",
            "file",
            file.id,
            payload={"target_tier": target.value, "content_hash": file.content_hash},
            commit=commit,
        )

    def run_migration_job(self, job: BackgroundJob) -> dict:
        """Execute one ``tier_migration`` job.

        Skipped without error when the target was deleted, when its content
        no longer matches the hash the job was enqueued for, or when a write
        lands while the migration runs (the write's own job takes over).
        Files that fail record the reason in ``sync_status`` / ``sync_error``
        before the error propagates to the worker for retry.
        """
        model = _TARGET_MODELS.get(job.target_type)
        if model is None:
            raise ValidationError(f"Unknown migration target type: {job.target_type}", field="target_type")

        record = self.db.get(model, job.target_id)
        if record is None:
            logger.info(f"Migration target {job.target_type} {job.target_id} no longer exists")
            return {"skipped": True, "reason": "target deleted"}

        if isinstance(record, AppFile) and not self.content_store.tiering_enabled(record.app):
            logger.info(f"Tiering disabled for app {record.app_id}, skipping file {record.id}")
            return {"skipped": True, "reason": "tiering disabled"}

        payload = job.payload or {}
        expected_hash = payload.get("content_hash")
        if expected_hash and expected_hash != record.content_hash:
            logger.info(f"Content of {job.target_type} {record.id} changed since job {job.id} was queued")
            return {"skipped": True, "reason": "content changed"}

        target = StorageTier(payload.get("target_tier") or plan_tier(record.size_bytes).value)
        record_id = record.id

        try:
            self.content_store.migrate_to_tier(record, target)
            if isinstance(record, AppFile):
                record.sync_status = "synced"
                record.sync_error = None
            self.db.commit()
        except StaleContentError:
            self.db.rollback()
            self.content_store.discard_pending()
            return {"skipped": True, "reason": "content changed"}
        except OverskillException as e:
            self.db.rollback()
            if model is AppFile:
                failed = self.db.get(AppFile, record_id)
                if failed is not None:
                    failed.sync_status = "failed"
                    failed.sync_error = e.message
                    self.db.commit()
            raise

        return {"skipped": False, "storage_location": record.storage_location}

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def migrate_files(
        self,
        app_ids: Optional[List[int]] = None,
        strategy: str = "conservative",
        dry_run: bool = False,
    ) -> Union[BatchResult, MigrationPlan]:
        """Promote inline live files above the strategy's size floor."""
        min_bytes = strategy_min_bytes(strategy)
        ids = self._candidate_ids(AppFile, StorageTier.INLINE, app_ids, min_bytes)
        if dry_run:
            return self._plan(
                "files", AppFile, ids,
                small_max=settings.inline_max_bytes,
                medium_max=settings.hybrid_max_bytes,
            )
        return self._run_batch(AppFile, ids, lambda record: promotion_target(record.size_bytes))

    def migrate_versions(
        self,
        app_ids: Optional[List[int]] = None,
        min_snapshot_bytes: Optional[int] = None,
        dry_run: bool = False,
    ) -> Union[BatchResult, MigrationPlan]:
        """Promote inline snapshot manifests of at least ``min_snapshot_bytes``."""
        if min_snapshot_bytes is None:
            min_snapshot_bytes = settings.version_snapshot_min_bytes
        ids = self._candidate_ids(AppVersion, StorageTier.INLINE, app_ids, min_snapshot_bytes - 1)
        if dry_run:
            return self._plan("versions", AppVersion, ids, small_max=10 * 1024, medium_max=100 * 1024)
        return self._run_batch(AppVersion, ids, lambda record: promotion_target(record.size_bytes))

    def migrate_version_files(
        self,
        app_ids: Optional[List[int]] = None,
        dry_run: bool = False,
    ) -> Union[BatchResult, MigrationPlan]:
        """Promote inline version files larger than the inline ceiling."""
        ids = self._candidate_ids(AppVersionFile, StorageTier.INLINE, app_ids, settings.inline_max_bytes)
        if dry_run:
            return self._plan(
                "version_files", AppVersionFile, ids,
                small_max=settings.inline_max_bytes,
                medium_max=settings.hybrid_max_bytes,
            )
        return self._run_batch(AppVersionFile, ids, lambda record: promotion_target(record.size_bytes))

    def rollback_to_inline(
        self,
        app_ids: Optional[List[int]] = None,
        dry_run: bool = False,
    ) -> Union[BatchResult, MigrationPlan]:
        """Bring every tiered record of the given apps back into the database."""
        groups = [
            (model, self._candidate_ids(model, tier, app_ids))
            for model in (AppFile, AppVersion, AppVersionFile)
            for tier in (StorageTier.HYBRID, StorageTier.OBJECT_STORE)
        ]
        if dry_run:
            plans = [self._plan("rollback", model, ids) for model, ids in groups]
            total_bytes = sum(p.total_bytes for p in plans)
            return MigrationPlan(
                kind="rollback",
                candidates=sum(p.candidates for p in plans),
                total_bytes=total_bytes,
                breakdown=SizeBreakdown(
                    small=sum(p.breakdown.small for p in plans),
                    medium=sum(p.breakdown.medium for p in plans),
                    large=sum(p.breakdown.large for p in plans),
                ),
                estimated_monthly_savings_usd=-monthly_savings(total_bytes),
                recommendation="Rolling back moves tiered content into the database and raises storage cost.",
            )
        return self._merge(
            self._run_batch(model, ids, lambda record: StorageTier.INLINE, require_store=False)
            for model, ids in groups
        )

    def cleanup_hybrid(self, app_ids: Optional[List[int]] = None) -> BatchResult:
        """Drop the inline copy of hybrid records whose stored copy verifies."""
        return self._merge(
            self._run_batch(
                model,
                self._candidate_ids(model, StorageTier.HYBRID, app_ids),
                lambda record: StorageTier.OBJECT_STORE,
            )
            for model in (AppFile, AppVersion, AppVersionFile)
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _candidate_ids(
        self,
        model: Type,
        tier: StorageTier,
        app_ids: Optional[List[int]] = None,
        larger_than: Optional[int] = None,
    ) -> List[int]:
        query = self.db.query(model.id).filter(model.storage_location == tier.value)
        if larger_than is not None:
            query = query.filter(model.size_bytes > larger_than)
        if app_ids:
            if model is AppVersionFile:
                query = query.join(AppVersion, AppVersionFile.app_version_id == AppVersion.id)
                query = query.filter(AppVersion.app_id.in_(app_ids))
            else:
                query = query.filter(model.app_id.in_(app_ids))
        return [row[0] for row in query.order_by(model.id.asc()).all()]

    def _run_batch(
        self,
        model: Type,
        ids: List[int],
        target_for: Callable,
        require_store: bool = True,
    ) -> BatchResult:
        """Migrate each record in its own savepoint.

        One failure never stops the rest; failures are reported per item.
        """
        if ids and require_store and self.content_store.object_store is None:
            raise ObjectStoreError("Object store is not configured")

        label = _TARGET_TYPES[model]
        succeeded = 0
        errors: list[BatchError] = []

        for record_id in ids:
            record = self.db.get(model, record_id)
            if record is None:
                errors.append(BatchError(item=f"{label} {record_id}", error="Record no longer exists"))
                continue

            savepoint = self.db.begin_nested()
            try:
                self.content_store.migrate_to_tier(record, target_for(record))
                if model is AppFile:
                    record.sync_status = "synced"
                    record.sync_error = None
                savepoint.commit()
                succeeded += 1
            except OverskillException as e:
                savepoint.rollback()
                logger.warning(
                    "Sweep migration failed",
                    extra={"record_type": label, "record_id": record_id, "error": e.message},
                )
                errors.append(BatchError(item=f"{label} {record_id}", error=e.message))
                if model is AppFile:
                    record.sync_status = "failed"
                    record.sync_error = e.message

        self.db.commit()
        result = BatchResult(
            total=len(ids),
            succeeded=succeeded,
            failed=len(ids) - succeeded,
            errors=errors,
        )
        logger.info(
            f"Sweep over {label} finished: {result.succeeded}/{result.total} migrated",
            extra={"record_type": label, "failed": result.failed},
        )
        return result

    @staticmethod
    def _merge(results: Iterable[BatchResult]) -> BatchResult:
        merged = BatchResult(total=0, succeeded=0, failed=0, errors=[])
        for result in results:
            merged.total += result.total
            merged.succeeded += result.succeeded
            merged.failed += result.failed
            merged.errors.extend(result.errors)
        return merged

    def _plan(
        self,
        kind: str,
        model: Type,
        ids: List[int],
        small_max: Optional[int] = None,
        medium_max: Optional[int] = None,
    ) -> MigrationPlan:
        """Dry-run summary. Reads sizes only."""
        small_max = settings.inline_max_bytes if small_max is None else small_max
        medium_max = settings.hybrid_max_bytes if medium_max is None else medium_max

        sizes = []
        if ids:
            sizes = [row[0] for row in self.db.query(model.size_bytes).filter(model.id.in_(ids)).all()]

        breakdown = SizeBreakdown(
            small=sum(1 for s in sizes if s < small_max),
            medium=sum(1 for s in sizes if small_max <= s < medium_max),
            large=sum(1 for s in sizes if s >= medium_max),
        )
        total_bytes = sum(sizes)

        if not sizes:
            recommendation = "Nothing to migrate."
        elif breakdown.large > len(sizes) / 2:
            recommendation = "Mostly large content: migrating gives the best storage savings."
        elif breakdown.small > len(sizes) / 2:
            recommendation = "Mostly small content: consider the large_only strategy first."
        else:
            recommendation = "Mixed sizes: the conservative strategy is a safe starting point."

        return MigrationPlan(
            kind=kind,
            candidates=len(sizes),
            total_bytes=total_bytes,
            breakdown=breakdown,
            estimated_monthly_savings_usd=monthly_savings(total_bytes),
            recommendation=recommendation,
        )
