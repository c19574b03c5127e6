"""
Object storage client for uploaded media.

Supports Cloudflare R2 (S3-compatible) with mock mode for local development.
Using R2 instead of S3 because:
- No egress fees (important for video delivery)
- Same S3 API means we could swap to actual S3 if needed

Both clients implement core.storage.backend.StorageBackend. They are
synchronous: FastAPI runs sync route handlers and sync body iterators in
its threadpool, so blocking boto3 calls never stall the event loop.

Mock mode keeps objects in memory and signs "upload URLs" it can later
redeem itself, enabling API testing without provisioning real storage.
"""

import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional
from urllib.parse import parse_qs, urlparse

from ...core.errors import AuthError, NotFoundError, StorageError
from ...core.storage.backend import StorageBackend
from ...core.storage.models import ObjectLocation, ObjectMetadata

logger = logging.getLogger(__name__)

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass
class StorageConfig:
    """
    Configuration for R2/S3-compatible storage.

    Using a dataclass instead of raw parameters means:
    - Configuration is explicit and documented
    - Simple to create test configurations
    """
    access_key_id: str
    secret_access_key: str
    bucket_name: str
    endpoint_url: str
    region: str = "auto"  # R2 uses 'auto' for region


def _is_missing(error: Exception) -> bool:
    """True if a botocore ClientError means the key does not exist."""
    response = getattr(error, "response", None) or {}
    code = str(response.get("Error", {}).get("Code", ""))
    return code in _MISSING_CODES


class R2StorageClient:
    """
    Cloudflare R2 object storage client.

    Uses boto3 because R2 is S3-compatible. This abstraction means
    we could swap to actual S3, MinIO, or other S3-compatible storage
    with minimal changes.
    """

    def __init__(self, config: StorageConfig) -> None:
        """
        Initialize R2 client with boto3.

        boto3 is imported here (not at module level) because mock mode
        doesn't need it.
        """
        import boto3
        from botocore.config import Config

        self._config = config

        # R2 requires v4 signatures and path-style addressing
        boto_config = Config(
            signature_version='s3v4',
            s3={'addressing_style': 'path'},
        )

        self._s3_client = boto3.client(
            's3',
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            region_name=config.region,
            config=boto_config,
        )

        logger.info(
            "Initialized R2 storage client",
            extra={
                "bucket": config.bucket_name,
                "endpoint": config.endpoint_url,
            }
        )

    def head(self, location: ObjectLocation) -> Optional[ObjectMetadata]:
        """Object size, content type and user metadata, or None if absent."""
        try:
            response = self._s3_client.head_object(
                Bucket=location.container,
                Key=location.key,
            )
        except Exception as e:
            if _is_missing(e):
                return None
            logger.error(
                "Failed to head object",
                extra={"location": str(location), "error": str(e)}
            )
            raise StorageError(f"Head failed: {e}") from e

        return ObjectMetadata(
            size=int(response.get('ContentLength', 0)),
            content_type=response.get('ContentType') or "application/octet-stream",
            metadata=dict(response.get('Metadata') or {}),
            last_modified=response.get('LastModified'),
        )

    def open_stream(
        self,
        location: ObjectLocation,
        start: Optional[int] = None,
        end: Optional[int] = None,
        chunk_size: int = 64 * 1024,
    ) -> Iterator[bytes]:
        """
        Stream the object in chunks via a ranged GET.

        This is a generator: the request is sent on the first next(), and
        closing the generator releases the HTTP connection.
        """
        params = {'Bucket': location.container, 'Key': location.key}
        if start is not None:
            params['Range'] = f"bytes={start}-{'' if end is None else end}"

        try:
            response = self._s3_client.get_object(**params)
        except Exception as e:
            if _is_missing(e):
                raise NotFoundError("Object not found") from e
            raise

        body = response['Body']
        try:
            for chunk in body.iter_chunks(chunk_size=chunk_size):
                if chunk:
                    yield chunk
        finally:
            body.close()

    def update_metadata(self, location: ObjectLocation, updates: dict[str, str]) -> None:
        """
        Merge `updates` into the object's user metadata.

        S3 has no metadata PATCH: the object is copied onto itself with
        MetadataDirective=REPLACE, which swaps the whole metadata set in one
        atomic operation. Content type must be re-sent or it is lost.
        """
        current = self.head(location)
        if current is None:
            raise NotFoundError("Object not found")

        metadata = {**current.metadata, **updates}

        try:
            self._s3_client.copy_object(
                Bucket=location.container,
                Key=location.key,
                CopySource={'Bucket': location.container, 'Key': location.key},
                Metadata=metadata,
                MetadataDirective='REPLACE',
                ContentType=current.content_type,
            )
        except Exception as e:
            if _is_missing(e):
                raise NotFoundError("Object not found") from e
            logger.error(
                "Failed to update object metadata",
                extra={"location": str(location), "error": str(e)}
            )
            raise StorageError(f"Metadata update failed: {e}") from e

        logger.debug(
            "Updated object metadata",
            extra={"location": str(location), "keys": sorted(updates)}
        )

    def generate_upload_url(self, location: ObjectLocation, expires_in: int) -> str:
        """
        Generate a presigned PUT URL for exactly this key.

        Presigned URLs enable:
        - Direct client uploads without routing video bytes through the API
        - Time-limited access, enforced by R2 itself
        """
        try:
            return self._s3_client.generate_presigned_url(
                'put_object',
                Params={
                    'Bucket': location.container,
                    'Key': location.key,
                },
                ExpiresIn=expires_in,
            )
        except Exception as e:
            logger.error(
                "Failed to generate presigned upload URL",
                extra={"location": str(location), "error": str(e)}
            )
            raise StorageError(f"Presigned URL generation failed: {e}") from e


# ---------------------------------------------------------------------------
# Mock Storage for Local Development
# ---------------------------------------------------------------------------

@dataclass
class _MockObject:
    data: bytes
    content_type: str
    metadata: dict[str, str] = field(default_factory=dict)
    last_modified: Optional[datetime] = None


class MockStorageClient:
    """
    In-memory storage for local development and tests.

    Objects live in a dictionary keyed by (bucket, key). Upload URLs are
    mock:// URIs carrying a random token; put_signed() redeems them and
    rejects expired or unknown tokens the way the real signer would.

    The lock only emulates the atomicity of a real object store.
    Not suitable for production.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._objects: dict[tuple[str, str], _MockObject] = {}
        self._grants: dict[str, tuple[ObjectLocation, float]] = {}
        self._clock = clock
        self._lock = threading.Lock()
        logger.info("Initialized mock storage client (in-memory)")

    def put_object(
        self,
        location: ObjectLocation,
        data: bytes,
        content_type: str = "application/octet-stream",
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        """Store an object directly (seeding, or a redeemed upload)."""
        with self._lock:
            self._objects[(location.container, location.key)] = _MockObject(
                data=bytes(data),
                content_type=content_type,
                metadata=dict(metadata or {}),
                last_modified=datetime.now(timezone.utc),
            )

        logger.debug(
            "Stored object in mock storage",
            extra={"location": str(location), "size_bytes": len(data)}
        )

    def put_signed(self, url: str, data: bytes, content_type: str = "application/octet-stream") -> ObjectLocation:
        """Redeem a mock upload URL. Raises AuthError if unknown or expired."""
        token = parse_qs(urlparse(url).query).get("token", [""])[0]
        with self._lock:
            grant = self._grants.get(token)
            self._prune_grants()
        if grant is None:
            raise AuthError("Unknown upload URL")

        location, expires_at = grant
        if self._clock() >= expires_at:
            raise AuthError("Upload URL expired")

        self.put_object(location, data, content_type=content_type)
        return location

    def head(self, location: ObjectLocation) -> Optional[ObjectMetadata]:
        with self._lock:
            obj = self._objects.get((location.container, location.key))
            if obj is None:
                return None
            return ObjectMetadata(
                size=len(obj.data),
                content_type=obj.content_type,
                metadata=dict(obj.metadata),
                last_modified=obj.last_modified,
            )

    def open_stream(
        self,
        location: ObjectLocation,
        start: Optional[int] = None,
        end: Optional[int] = None,
        chunk_size: int = 64 * 1024,
    ) -> Iterator[bytes]:
        with self._lock:
            obj = self._objects.get((location.container, location.key))
        if obj is None:
            raise NotFoundError("Object not found")

        first = 0 if start is None else start
        last = len(obj.data) - 1 if end is None else min(end, len(obj.data) - 1)

        position = first
        while position <= last:
            stop = min(position + chunk_size, last + 1)
            yield obj.data[position:stop]
            position = stop

    def update_metadata(self, location: ObjectLocation, updates: dict[str, str]) -> None:
        with self._lock:
            obj = self._objects.get((location.container, location.key))
            if obj is None:
                raise NotFoundError("Object not found")
            obj.metadata = {**obj.metadata, **updates}

    def generate_upload_url(self, location: ObjectLocation, expires_in: int) -> str:
        """Return a mock URL whose token put_signed() accepts until expiry."""
        token = secrets.token_urlsafe(16)
        expires_at = self._clock() + expires_in
        with self._lock:
            self._prune_grants()
            self._grants[token] = (location, expires_at)

        return f"mock://storage/{location.container}/{location.key}?expires={int(expires_at)}&token={token}"

    def _prune_grants(self) -> None:
        """Drop expired upload grants. Caller holds the lock."""
        now = self._clock()
        for token in [t for t, (_, expires_at) in self._grants.items() if now >= expires_at]:
            del self._grants[token]


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_storage_client(
    config: Optional[StorageConfig] = None,
    mock_mode: bool = False,
) -> StorageBackend:
    """
    Create storage client based on configuration.

    Args:
        config: Storage configuration (required if not mock_mode)
        mock_mode: If True, return mock client for testing

    Returns:
        StorageBackend implementation (R2 or Mock)
    """
    if mock_mode:
        return MockStorageClient()

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return R2StorageClient(config)
