"""
Signed upload capabilities for new media objects.

The issuer is stateless: every call mints a fresh random object id and a
PUT capability scoped to exactly that object. Nothing is associated with an
account until the client finalizes the upload.
"""

import logging
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from ..errors import BuskerError, StorageError
from .backend import StorageBackend
from .gateway import ObjectAccessGateway
from .models import UploadGrant, UploadKind

logger = logging.getLogger(__name__)

UPLOAD_URL_TTL_SECONDS = 900


class UploadURLIssuer:
    """Mints short-lived write capabilities for as-yet-unassociated objects."""

    def __init__(
        self,
        backend: StorageBackend,
        gateway: ObjectAccessGateway,
        ttl_seconds: int = UPLOAD_URL_TTL_SECONDS,
    ) -> None:
        self._backend = backend
        self._gateway = gateway
        self._ttl_seconds = ttl_seconds

    def issue(self, kind: UploadKind, requester_id: str) -> UploadGrant:
        """
        Issue a PUT capability for a brand-new object.

        The object id is a random UUID4 (122 random bits), so concurrent
        calls never share a target. Expiry is enforced by the signing
        backend, not here.
        """
        object_id = str(uuid4())
        location = self._gateway.location_for(object_id)
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self._ttl_seconds)

        try:
            url = self._backend.generate_upload_url(location, expires_in=self._ttl_seconds)
        except BuskerError:
            raise
        except Exception as e:
            logger.error(
                "Failed to sign upload URL",
                extra={"object_id": object_id, "kind": kind.value, "error": str(e)}
            )
            raise StorageError(f"Upload URL signing failed: {e}") from e

        logger.info(
            "Issued upload URL",
            extra={
                "object_id": object_id,
                "kind": kind.value,
                "requester_id": requester_id,
                "expires_at": expires_at.isoformat(),
            }
        )

        return UploadGrant(
            object_id=object_id,
            location=location,
            url=url,
            kind=kind,
            expires_at=expires_at,
        )
