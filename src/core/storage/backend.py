"""
Interface the storage gateway needs from an object store.

Using a Protocol here means the gateway doesn't know whether it talks to
Cloudflare R2, AWS S3, MinIO or the in-memory mock. Implementations live in
src/infrastructure/storage and raise the core error types (NotFoundError,
StorageError) rather than backend-specific exceptions.
"""

from typing import Iterator, Optional, Protocol

from .models import ObjectLocation, ObjectMetadata


class StorageBackend(Protocol):
    """Object store operations used by the gateway, ACL store and upload issuer."""

    def head(self, location: ObjectLocation) -> Optional[ObjectMetadata]:
        """Return size/content-type/user metadata, or None if the object is absent."""
        ...

    def open_stream(
        self,
        location: ObjectLocation,
        start: Optional[int] = None,
        end: Optional[int] = None,
        chunk_size: int = 64 * 1024,
    ) -> Iterator[bytes]:
        """
        Stream the object (or the inclusive window [start, end]) in chunks.

        Must not buffer the whole object. The returned iterator should be
        closable so the underlying connection is released early.
        """
        ...

    def update_metadata(self, location: ObjectLocation, updates: dict[str, str]) -> None:
        """
        Atomically replace the object's user metadata with its current
        metadata merged with `updates`. Raises NotFoundError if the backend
        reports the object missing.
        """
        ...

    def generate_upload_url(
        self,
        location: ObjectLocation,
        expires_in: int,
    ) -> str:
        """Sign a PUT capability for exactly this location."""
        ...
