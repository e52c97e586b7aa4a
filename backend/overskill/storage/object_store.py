"""Cloudflare R2 object store, reached through its S3-compatible API.

Object keys:
  - apps/{app_id}/files/{content_hash}/{path}               live files
  - apps/{app_id}/versions/{version_id}/{path}              version files
  - apps/{app_id}/snapshots/v{version_id}/snapshot.json     version manifests
"""

import logging
import posixpath
from typing import Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..core.config import Settings, settings
from ..exceptions import ObjectStoreError

logger = logging.getLogger(__name__)

# R2 only accepts SigV4.
S3_CONFIG = Config(signature_version="s3v4", retries={"max_attempts": 3, "mode": "standard"})

_CONTENT_TYPES = {
    ".html": "text/html",
    ".htm": "text/html",
    ".js": "application/javascript",
    ".mjs": "application/javascript",
    ".jsx": "application/javascript",
    ".ts": "application/typescript",
    ".tsx": "application/typescript",
    ".css": "text/css",
    ".json": "application/json",
    ".md": "text/markdown",
    ".txt": "text/plain",
    ".svg": "image/svg+xml",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".ico": "image/x-icon",
    ".webp": "image/webp",
    ".xml": "application/xml",
    ".yml": "text/yaml",
    ".yaml": "text/yaml",
}


def content_type_for(path: str) -> str:
    """MIME type for an object, derived from its extension."""
    ext = posixpath.splitext(path)[1].lower()
    return _CONTENT_TYPES.get(ext, "text/plain")


def file_object_key(app_id: int, path: str, content_hash: str) -> str:
    """Live file keys carry the content hash, so a key never changes bytes."""
    return f"apps/{app_id}/files/{content_hash}/{path.lstrip('/')}"


def version_file_object_key(app_id: int, version_id: int, path: str) -> str:
    return f"apps/{app_id}/versions/{version_id}/{path.lstrip('/')}"


def snapshot_object_key(app_id: int, version_id: int) -> str:
    return f"apps/{app_id}/snapshots/v{version_id}/snapshot.json"


class ObjectStorage(Protocol):
    """Minimal put/get/delete interface the content store depends on."""

    def put(self, key: str, data: bytes, content_type: str = "text/plain") -> None: ...
    def get(self, key: str) -> bytes: ...
    def delete(self, key: str) -> None: ...


class R2ObjectStore:
    """boto3-backed ``ObjectStorage`` for one R2 bucket.

    Every botocore failure surfaces as ``ObjectStoreError`` so callers
    handle a single transient-error type.
    """

    def __init__(
        self,
        bucket: str,
        endpoint_url: str,
        access_key_id: str,
        secret_access_key: str,
        region: str = "auto",
        client=None,
    ):
        self.bucket = bucket
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=region,
            config=S3_CONFIG,
        )

    @classmethod
    def from_settings(cls, config: Settings) -> "R2ObjectStore":
        return cls(
            bucket=config.r2_bucket,
            endpoint_url=config.get_r2_endpoint(),
            access_key_id=config.r2_access_key_id,
            secret_access_key=config.r2_secret_access_key,
            region=config.r2_region,
        )

    def put(self, key: str, data: bytes, content_type: str = "text/plain") -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("R2 put_object failed", extra={"object_key": key, "error": str(e)})
            raise ObjectStoreError(f"Failed to upload {key}", object_key=key, original_error=e) from e
        logger.debug("Uploaded object", extra={"object_key": key, "size_bytes": len(data)})

    def get(self, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in ("NoSuchKey", "404"):
                raise ObjectStoreError(f"Object not found: {key}", object_key=key, original_error=e) from e
            logger.error("R2 get_object failed", extra={"object_key": key, "error": str(e)})
            raise ObjectStoreError(f"Failed to fetch {key}", object_key=key, original_error=e) from e
        except BotoCoreError as e:
            logger.error("R2 get_object failed", extra={"object_key": key, "error": str(e)})
            raise ObjectStoreError(f"Failed to fetch {key}", object_key=key, original_error=e) from e

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error("R2 delete_object failed", extra={"object_key": key, "error": str(e)})
            raise ObjectStoreError(f"Failed to delete {key}", object_key=key, original_error=e) from e


_store: Optional[R2ObjectStore] = None


def get_object_store() -> Optional[ObjectStorage]:
    """Process-wide R2 client, or None when R2 is not configured.

    Also used as a FastAPI dependency so tests can override it.
    """
    global _store
    if not settings.object_store_configured:
        return None
    if _store is None:
        _store = R2ObjectStore.from_settings(settings)
        logger.info("R2 object store client created", extra={"bucket": settings.r2_bucket})
    return _store
