"""Database models."""

from .shard import DatabaseShard
from .app import App
from .file import AppFile
from .version import AppVersion, AppVersionFile
from .deployment import AppDeployment
from .background_job import BackgroundJob

__all__ = [
    "DatabaseShard", "App", "AppFile",
    "AppVersion", "AppVersionFile",
    "AppDeployment", "BackgroundJob",
]
