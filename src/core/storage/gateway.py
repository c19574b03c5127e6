"""
Authorization-gated access to stored media objects.

The gateway turns a logical path (/objects/<id>) into a backing location,
checks the object's ACL policy and produces a framework-agnostic download
response with byte-range support for video seeking.

Streaming works on a bounded window of chunks pulled from the backend, so
memory use does not grow with object size. The first chunk is read before
any header is committed: a backend failure there becomes a StorageError
(500). Once bytes have gone out the status can no longer change, so a
failure is logged and re-raised to abort the connection.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterator, Optional

from ..errors import AuthError, BuskerError, ConflictError, FieldError, NotFoundError, RangeError, StorageError
from .acl import AclPolicyStore, can_access, policy_from_metadata
from .backend import StorageBackend
from .models import (
    AccessMode,
    AclPolicy,
    ObjectLocation,
    ObjectMetadata,
    ObjectPermission,
    StoredObject,
    Visibility,
)
from .ranges import ByteRange, parse_range_header, unsatisfiable_content_range

logger = logging.getLogger(__name__)

_OBJECT_PATH = re.compile(
    r"^/objects/(?P<object_id>"
    r"[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12})$"
)

UPLOADS_DIR = "uploads"


@dataclass
class GatewayConfig:
    """
    Where objects live and how they are cached.

    private_prefix is the key prefix inside the bucket under which uploads
    land; public_prefixes are searched in order for /public-objects/ paths.
    """
    bucket: str
    private_prefix: str = ""
    public_prefixes: list[str] = field(default_factory=list)
    public_cache_ttl_seconds: int = 86400
    private_cache_ttl_seconds: int = 3600
    chunk_size: int = 64 * 1024


@dataclass
class DownloadResponse:
    """Status, headers and (optionally) a body iterator, ready for any HTTP framework."""
    status_code: int
    headers: dict[str, str]
    body: Optional[Iterator[bytes]] = None


def _join_key(*parts: str) -> str:
    return "/".join(part.strip("/") for part in parts if part and part.strip("/"))


class ObjectAccessGateway:
    """
    Resolves, authorizes and streams stored objects.

    Every request is independent: nothing is cached between calls, so
    concurrent range reads of the same object never interact.
    """

    def __init__(
        self,
        backend: StorageBackend,
        acl_store: AclPolicyStore,
        config: GatewayConfig,
    ) -> None:
        self._backend = backend
        self._acl_store = acl_store
        self._config = config

    # -----------------------------------------------------------------------
    # Resolution
    # -----------------------------------------------------------------------

    def location_for(self, object_id: str) -> ObjectLocation:
        """Backing location of an uploaded object."""
        return ObjectLocation(
            container=self._config.bucket,
            key=_join_key(self._config.private_prefix, UPLOADS_DIR, object_id),
        )

    def resolve(self, logical_path: str, mode: AccessMode = AccessMode.STRICT) -> StoredObject:
        """
        Map /objects/<id> to a StoredObject.

        Paths of any other shape are NotFound, without consulting the
        backend. In STRICT mode the object must exist and its size,
        content type and policy are loaded; OPTIMISTIC returns the location
        only.
        """
        match = _OBJECT_PATH.fullmatch(logical_path or "")
        if not match:
            raise NotFoundError("Object not found")

        object_id = match.group("object_id")
        location = self.location_for(object_id)

        if mode == AccessMode.OPTIMISTIC:
            return StoredObject(id=object_id, location=location)

        metadata = self._head(location)
        if metadata is None:
            raise NotFoundError("Object not found")

        return self._build_object(object_id, location, metadata)

    def search_public(self, file_path: str) -> Optional[StoredObject]:
        """
        Look for `file_path` under each configured public prefix, in order.

        Objects found here are public by placement, whatever their metadata says.
        """
        segments = [segment for segment in (file_path or "").split("/") if segment]
        if not segments or any(segment in (".", "..") for segment in segments):
            return None

        relative = "/".join(segments)
        for prefix in self._config.public_prefixes:
            location = ObjectLocation(
                container=self._config.bucket,
                key=_join_key(prefix, relative),
            )
            metadata = self._head(location)
            if metadata is not None:
                stored = self._build_object(relative, location, metadata)
                owner = stored.policy.owner if stored.policy else ""
                stored.policy = AclPolicy(owner=owner, visibility=Visibility.PUBLIC)
                return stored

        return None

    # -----------------------------------------------------------------------
    # Authorization
    # -----------------------------------------------------------------------

    def can_access(
        self,
        stored: StoredObject,
        requester_id: Optional[str],
        permission: ObjectPermission = ObjectPermission.READ,
    ) -> bool:
        return can_access(stored.policy, requester_id, permission)

    def authorize(
        self,
        stored: StoredObject,
        requester_id: Optional[str],
        permission: ObjectPermission = ObjectPermission.READ,
    ) -> None:
        """Raise AuthError unless the requester may access the object."""
        if not self.can_access(stored, requester_id, permission):
            logger.info(
                "Object access denied",
                extra={
                    "object_id": stored.id,
                    "requester_id": requester_id or "anonymous",
                    "permission": permission.value,
                }
            )
            raise AuthError("Not authorized to access this object")

    def finalize(
        self,
        object_id: str,
        owner_id: str,
        visibility: Visibility,
    ) -> StoredObject:
        """
        Attach the ACL policy to a freshly uploaded object.

        Runs in OPTIMISTIC mode: the client has just confirmed its PUT, and
        the store may not list the object yet. The policy is written once.
        Repeating the same finalize is a no-op so client retries stay safe;
        a different owner gets AuthError and a different visibility gets
        ConflictError. The policy is read back after the write, so the
        losing side of two concurrent finalizes is refused.
        """
        stored = self.resolve(f"/objects/{object_id}", mode=AccessMode.OPTIMISTIC)
        policy = AclPolicy(owner=owner_id, visibility=visibility)

        existing = self._acl_store.get_policy(stored.location)
        if existing is not None:
            self._check_refinalize(object_id, existing, policy)
            logger.info("Finalize repeated with the same policy", extra={"object_id": object_id})
            stored.policy = existing
            return stored

        self._acl_store.set_policy(stored.location, policy, mode=AccessMode.OPTIMISTIC)

        written = self._acl_store.get_policy(stored.location)
        if written is not None and written != policy:
            self._check_refinalize(object_id, written, policy)

        stored.policy = policy
        return stored

    def _check_refinalize(self, object_id: str, existing: AclPolicy, requested: AclPolicy) -> None:
        if existing.owner != requested.owner:
            logger.warning(
                "Finalize refused: object owned by another user",
                extra={"object_id": object_id, "requester_id": requested.owner}
            )
            raise AuthError("Object already belongs to another user")
        if existing.visibility != requested.visibility:
            logger.warning(
                "Finalize refused: visibility already set",
                extra={
                    "object_id": object_id,
                    "visibility": existing.visibility.value,
                    "requested_visibility": requested.visibility.value,
                }
            )
            raise ConflictError(FieldError(
                "visibility", "ALREADY_FINALIZED",
                f"Object was already finalized as {existing.visibility.value}",
            ))

    # -----------------------------------------------------------------------
    # Serving
    # -----------------------------------------------------------------------

    def head(self, stored: StoredObject) -> DownloadResponse:
        """Metadata headers only. Never looks at Range."""
        headers = {
            "Content-Length": str(stored.size),
            "Content-Type": stored.content_type,
            "Accept-Ranges": "bytes",
            "Cache-Control": self._cache_control(stored, full_body=True),
        }
        return DownloadResponse(status_code=200, headers=headers)

    def download(self, stored: StoredObject, range_header: Optional[str] = None) -> DownloadResponse:
        """
        Build the response for GET, honoring a single byte range.

        Returns 200 for the full object, 206 for a satisfiable range and 416
        (empty body, Content-Range: bytes */size) for anything else.
        """
        size = stored.size

        if not range_header:
            logger.debug(
                "Full object download",
                extra={"object_id": stored.id, "size": size}
            )
            body = self._open_body(stored, None)
            headers = {
                "Content-Length": str(size),
                "Content-Type": stored.content_type,
                "Accept-Ranges": "bytes",
                "Cache-Control": self._cache_control(stored, full_body=True),
            }
            return DownloadResponse(status_code=200, headers=headers, body=body)

        try:
            byte_range = parse_range_header(range_header, size)
        except RangeError as e:
            logger.info(
                "Unsatisfiable range",
                extra={"object_id": stored.id, "range": range_header, "size": size, "reason": e.message}
            )
            return DownloadResponse(
                status_code=416,
                headers={
                    "Content-Range": unsatisfiable_content_range(size),
                    "Accept-Ranges": "bytes",
                    "Content-Length": "0",
                },
            )

        logger.debug(
            "Range download",
            extra={
                "object_id": stored.id,
                "start": byte_range.start,
                "end": byte_range.end,
                "length": byte_range.length,
            }
        )

        body = self._open_body(stored, byte_range)
        headers = {
            "Content-Range": byte_range.content_range,
            "Content-Length": str(byte_range.length),
            "Content-Type": stored.content_type,
            "Accept-Ranges": "bytes",
            "Cache-Control": self._cache_control(stored, full_body=False),
        }
        return DownloadResponse(status_code=206, headers=headers, body=body)

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _head(self, location: ObjectLocation) -> Optional[ObjectMetadata]:
        try:
            return self._backend.head(location)
        except BuskerError:
            raise
        except Exception as e:
            logger.error(
                "Failed to read object metadata",
                extra={"location": str(location), "error": str(e)}
            )
            raise StorageError(f"Metadata lookup failed: {e}") from e

    def _build_object(
        self,
        object_id: str,
        location: ObjectLocation,
        metadata: ObjectMetadata,
    ) -> StoredObject:
        return StoredObject(
            id=object_id,
            location=location,
            size=metadata.size,
            content_type=metadata.content_type or "application/octet-stream",
            policy=policy_from_metadata(metadata.metadata),
            created_at=metadata.last_modified,
        )

    def _cache_control(self, stored: StoredObject, full_body: bool) -> str:
        if stored.is_public:
            directive = f"public, max-age={self._config.public_cache_ttl_seconds}"
            return f"{directive}, immutable" if full_body else directive
        return f"private, max-age={self._config.private_cache_ttl_seconds}"

    def _open_body(self, stored: StoredObject, byte_range: Optional[ByteRange]) -> Iterator[bytes]:
        """
        Open the backend stream and read its first chunk.

        Errors here happen before any header is sent and surface as
        StorageError. The returned iterator relays the rest.
        """
        start = byte_range.start if byte_range else None
        end = byte_range.end if byte_range else None

        try:
            chunks = iter(self._backend.open_stream(
                stored.location,
                start=start,
                end=end,
                chunk_size=self._config.chunk_size,
            ))
            first = next(chunks, b"")
        except Exception as e:
            logger.error(
                "Failed to open object stream",
                extra={"object_id": stored.id, "error": str(e)}
            )
            raise StorageError(f"Failed to read object: {e}") from e

        return self._relay(stored, first, chunks)

    def _relay(self, stored: StoredObject, first: bytes, chunks: Iterator[bytes]) -> Iterator[bytes]:
        sent = 0
        try:
            if first:
                yield first
                sent += len(first)
            for chunk in chunks:
                yield chunk
                sent += len(chunk)
        except Exception as e:
            # Headers are already out; the only thing left is to drop the connection.
            logger.error(
                "Object stream failed mid-response, aborting connection",
                extra={"object_id": stored.id, "bytes_sent": sent, "error": str(e)}
            )
            raise
        finally:
            close = getattr(chunks, "close", None)
            if close is not None:
                close()
