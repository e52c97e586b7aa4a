"""Business logic services."""

from .app_service import AppService
from .content_store import ContentStoreService
from .deployment_service import DeploymentService
from .file_service import FileService
from .job_service import JobService
from .shard_service import ShardService
from .storage_analytics_service import StorageAnalyticsService
from .tiering_service import TieringService
from .version_service import VersionService

__all__ = [
    "AppService",
    "ContentStoreService",
    "DeploymentService",
    "FileService",
    "JobService",
    "ShardService",
    "StorageAnalyticsService",
    "TieringService",
    "VersionService",
]
