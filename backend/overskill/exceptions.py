"""Custom exception hierarchy for the OverSkill storage service."""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Lookup errors
    APP_NOT_FOUND = "APP_NOT_FOUND"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    VERSION_NOT_FOUND = "VERSION_NOT_FOUND"
    DEPLOYMENT_NOT_FOUND = "DEPLOYMENT_NOT_FOUND"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Content / integrity errors
    CONTENT_UNAVAILABLE = "CONTENT_UNAVAILABLE"
    INTEGRITY_ERROR = "INTEGRITY_ERROR"
    MIGRATION_FAILED = "MIGRATION_FAILED"
    STALE_CONTENT = "STALE_CONTENT"

    # External dependency errors
    OBJECT_STORE_ERROR = "OBJECT_STORE_ERROR"

    # Invariant violations
    ROLLBACK_NOT_ALLOWED = "ROLLBACK_NOT_ALLOWED"
    DUPLICATE_ACTIVE_DEPLOYMENT = "DUPLICATE_ACTIVE_DEPLOYMENT"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    VERSION_CONFLICT = "VERSION_CONFLICT"

    # Database errors
    DATABASE_ERROR = "DATABASE_ERROR"

    # Rate limiting
    RATE_LIMITED = "RATE_LIMITED"

    # Generic errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class OverskillException(Exception):
    """
    Base exception for all service errors.

    Provides structured error responses with:
    - Human-readable message
    - Machine-readable error code
    - HTTP status code
    - Optional additional details
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        return {
            "error": self.error_code.value,
            "message": self.message,
            "details": self.details
        }


class AppNotFoundError(OverskillException):
    """Application not found in database."""

    def __init__(self, app_id):
        super().__init__(
            f"App not found: {app_id}",
            ErrorCode.APP_NOT_FOUND,
            status_code=404,
            details={"app_id": app_id}
        )


class FileNotFoundInAppError(OverskillException):
    """App file not found in database."""

    def __init__(self, file_id):
        super().__init__(
            f"File not found: {file_id}",
            ErrorCode.FILE_NOT_FOUND,
            status_code=404,
            details={"file_id": file_id}
        )


class VersionNotFoundError(OverskillException):
    """Version snapshot not found in database."""

    def __init__(self, version_id):
        super().__init__(
            f"Version not found: {version_id}",
            ErrorCode.VERSION_NOT_FOUND,
            status_code=404,
            details={"version_id": version_id}
        )


class DeploymentNotFoundError(OverskillException):
    """Deployment record not found in database."""

    def __init__(self, deployment_id):
        super().__init__(
            f"Deployment not found: {deployment_id}",
            ErrorCode.DEPLOYMENT_NOT_FOUND,
            status_code=404,
            details={"deployment_id": deployment_id}
        )


class JobNotFoundError(OverskillException):
    """Background job not found in database."""

    def __init__(self, job_id):
        super().__init__(
            f"Job not found: {job_id}",
            ErrorCode.JOB_NOT_FOUND,
            status_code=404,
            details={"job_id": job_id}
        )


class ValidationError(OverskillException):
    """Validation failed for caller input. Nothing was persisted."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(
            message,
            ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )


class ContentRetrievalError(OverskillException):
    """No storage tier could produce the content of a record that should have some."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message,
            ErrorCode.CONTENT_UNAVAILABLE,
            status_code=502,
            details=details
        )


class ContentIntegrityError(OverskillException):
    """Persisted tier metadata disagrees with the stored bytes."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message,
            ErrorCode.INTEGRITY_ERROR,
            status_code=500,
            details=details
        )


class MigrationError(OverskillException):
    """A tier migration was aborted. The record keeps its previous tier."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message,
            ErrorCode.MIGRATION_FAILED,
            status_code=502,
            details=details
        )


class StaleContentError(OverskillException):
    """The record changed between loading it and committing a tier move."""

    def __init__(self, record_type: str, record_id):
        super().__init__(
            f"{record_type} {record_id} changed while its tier migration ran",
            ErrorCode.STALE_CONTENT,
            status_code=409,
            details={"record_type": record_type, "record_id": record_id}
        )


class ObjectStoreError(OverskillException):
    """The object store rejected or failed a request. Treated as transient."""

    def __init__(self, message: str, object_key: Optional[str] = None, original_error: Optional[Exception] = None):
        details: Dict[str, Any] = {}
        if object_key:
            details["object_key"] = object_key
        if original_error:
            details["original_error"] = str(original_error)
        super().__init__(
            message,
            ErrorCode.OBJECT_STORE_ERROR,
            status_code=502,
            details=details
        )


class RollbackNotAllowedError(OverskillException):
    """The target deployment cannot be rolled back to."""

    def __init__(self, deployment_id, reason: str):
        super().__init__(
            f"Cannot roll back to deployment {deployment_id}: {reason}",
            ErrorCode.ROLLBACK_NOT_ALLOWED,
            status_code=409,
            details={"deployment_id": deployment_id, "reason": reason}
        )


class DuplicateActiveDeploymentError(OverskillException):
    """Another active deployment for the same environment was created concurrently."""

    def __init__(self, app_id, environment: str):
        super().__init__(
            f"An active {environment} deployment already exists for app {app_id}",
            ErrorCode.DUPLICATE_ACTIVE_DEPLOYMENT,
            status_code=409,
            details={"app_id": app_id, "environment": environment}
        )


class InvalidStateTransitionError(OverskillException):
    """Requested status change is not allowed from the current status."""

    def __init__(self, deployment_id, current: str, requested: str):
        super().__init__(
            f"Deployment {deployment_id} is {current}; cannot move to {requested}",
            ErrorCode.INVALID_STATE_TRANSITION,
            status_code=409,
            details={"deployment_id": deployment_id, "current": current, "requested": requested}
        )


class VersionConflictError(OverskillException):
    """A version number could not be allocated without colliding."""

    def __init__(self, app_id, attempts: int):
        super().__init__(
            f"Could not allocate a version number for app {app_id} after {attempts} attempts",
            ErrorCode.VERSION_CONFLICT,
            status_code=409,
            details={"app_id": app_id, "attempts": attempts}
        )


class DatabaseError(OverskillException):
    """Database operation failed."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        details = {}
        if original_error:
            details["original_error"] = str(original_error)

        super().__init__(
            message,
            ErrorCode.DATABASE_ERROR,
            status_code=500,
            details=details
        )
