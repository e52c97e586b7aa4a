"""Storage usage and cost reporting across tiers."""

from typing import Dict, List, Optional, Type

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import AppFile, AppVersion, AppVersionFile
from ..schemas.storage import StorageReport, TierUsage
from ..storage import StorageTier
from .tiering_service import DATABASE_COST_PER_GB, R2_COST_PER_GB, BYTES_PER_GB


class StorageAnalyticsService:
    """Aggregates per-tier counts and bytes. Read-only."""

    def __init__(self, db: Session):
        self.db = db

    def _usage(self, model: Type, app_ids: Optional[List[int]] = None) -> Dict[str, TierUsage]:
        query = self.db.query(
            model.storage_location,
            func.count(model.id),
            func.coalesce(func.sum(model.size_bytes), 0),
        )
        if app_ids:
            if model is AppVersionFile:
                query = query.join(AppVersion, AppVersionFile.app_version_id == AppVersion.id)
                query = query.filter(AppVersion.app_id.in_(app_ids))
            else:
                query = query.filter(model.app_id.in_(app_ids))

        usage = {tier.value: TierUsage() for tier in StorageTier}
        for location, count, total in query.group_by(model.storage_location).all():
            usage[location] = TierUsage(count=count, bytes=int(total))
        return usage

    def report(self, app_ids: Optional[List[int]] = None) -> StorageReport:
        """Per-tier usage, share of bytes already in R2, and monthly cost estimate.

        Hybrid bytes count toward both tiers' cost since both copies exist.
        """
        files = self._usage(AppFile, app_ids)
        versions = self._usage(AppVersion, app_ids)
        version_files = self._usage(AppVersionFile, app_ids)

        def total(tier: StorageTier) -> int:
            return sum(group[tier.value].bytes for group in (files, versions, version_files))

        inline_bytes = total(StorageTier.INLINE)
        hybrid_bytes = total(StorageTier.HYBRID)
        object_bytes = total(StorageTier.OBJECT_STORE)
        total_bytes = inline_bytes + hybrid_bytes + object_bytes

        database_bytes = inline_bytes + hybrid_bytes
        r2_bytes = hybrid_bytes + object_bytes
        database_cost = database_bytes / BYTES_PER_GB * DATABASE_COST_PER_GB
        r2_cost = r2_bytes / BYTES_PER_GB * R2_COST_PER_GB
        all_database_cost = total_bytes / BYTES_PER_GB * DATABASE_COST_PER_GB

        return StorageReport(
            files=files,
            versions=versions,
            version_files=version_files,
            total_bytes=total_bytes,
            object_store_bytes=r2_bytes,
            migration_percentage=round(object_bytes / total_bytes * 100, 2) if total_bytes else 0.0,
            estimated_monthly_cost_usd={
                "database": round(database_cost, 6),
                "object_store": round(r2_cost, 6),
                "total": round(database_cost + r2_cost, 6),
                "all_database_baseline": round(all_database_cost, 6),
            },
        )
