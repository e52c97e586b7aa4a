"""Storage tiering schemas."""

from pydantic import BaseModel, Field
from typing import Dict, List, Literal, Optional


class BatchError(BaseModel):
    """A single failure within a batch operation."""
    item: str
    error: str


class BatchResult(BaseModel):
    """Result of a batch operation."""
    total: int
    succeeded: int
    failed: int
    errors: List[BatchError] = []


class SizeBreakdown(BaseModel):
    """Candidate counts by size bucket."""
    small: int = 0
    medium: int = 0
    large: int = 0


class MigrationPlan(BaseModel):
    """What a sweep would do, computed without touching any state."""
    kind: str
    candidates: int
    total_bytes: int
    breakdown: SizeBreakdown
    estimated_monthly_savings_usd: float
    recommendation: str


class SweepRequest(BaseModel):
    """Start a tier migration sweep."""
    kind: Literal["files", "versions", "version_files"] = "files"
    strategy: Literal["conservative", "aggressive", "large_only", "all"] = "conservative"
    app_ids: Optional[List[int]] = None
    min_snapshot_bytes: Optional[int] = Field(default=None, ge=0)
    dry_run: bool = False


class RollbackSweepRequest(BaseModel):
    """Bring tiered content back inline."""
    app_ids: Optional[List[int]] = None
    dry_run: bool = False


class SweepResponse(BaseModel):
    """Either a dry-run plan or the batch result of a real run."""
    dry_run: bool
    plan: Optional[MigrationPlan] = None
    result: Optional[BatchResult] = None


class TierUsage(BaseModel):
    """Count and bytes held at one tier."""
    count: int = 0
    bytes: int = 0


class StorageReport(BaseModel):
    """Per-tier usage and estimated monthly cost."""
    files: Dict[str, TierUsage]
    versions: Dict[str, TierUsage]
    version_files: Dict[str, TierUsage]
    total_bytes: int
    object_store_bytes: int
    migration_percentage: float
    estimated_monthly_cost_usd: Dict[str, float]
