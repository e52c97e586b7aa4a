"""Data access repositories."""

from .base import BaseRepository
from .app_repository import AppRepository
from .file_repository import FileRepository
from .version_repository import VersionRepository
from .deployment_repository import DeploymentRepository

__all__ = [
    "BaseRepository",
    "AppRepository",
    "FileRepository",
    "VersionRepository",
    "DeploymentRepository",
]
