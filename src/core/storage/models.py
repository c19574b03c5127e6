"""
Domain models for stored media objects.

These models describe what the gateway knows about an object: where it
lives, who owns it and who may read it. They have no dependency on boto3 or
FastAPI.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class Visibility(Enum):
    """Who may read an object."""
    PUBLIC = "public"
    PRIVATE = "private"


class ObjectPermission(Enum):
    READ = "read"
    WRITE = "write"


class UploadKind(Enum):
    """What the client intends to upload. Both kinds share the uploads/ namespace."""
    VIDEO = "video"
    THUMBNAIL = "thumbnail"


class AccessMode(Enum):
    """
    Two-mode contract for storage access.

    STRICT: the caller requires the object to exist; absence is NotFound.
    OPTIMISTIC: the caller asserts the object exists (e.g. right after an
    upload it just confirmed). No prior existence check is made, and a
    NotFound from the backend is then a genuine storage error.
    """
    STRICT = "strict"
    OPTIMISTIC = "optimistic"


@dataclass(frozen=True)
class ObjectLocation:
    """Backing location of an object: (bucket, key)."""
    container: str
    key: str

    def __str__(self) -> str:
        return f"/{self.container}/{self.key}"


@dataclass(frozen=True)
class AclPolicy:
    """
    Owner and visibility of a stored object.

    Serialized as a small JSON document in the object's user metadata, so
    that replacing it is a single atomic metadata write.
    """
    owner: str
    visibility: Visibility

    def to_json(self) -> str:
        return json.dumps({"owner": self.owner, "visibility": self.visibility.value})

    @classmethod
    def from_json(cls, raw: str) -> "AclPolicy":
        data = json.loads(raw)
        return cls(owner=str(data["owner"]), visibility=Visibility(data["visibility"]))


@dataclass(frozen=True)
class ObjectMetadata:
    """What the backing store reports for an object (HEAD)."""
    size: int
    content_type: str
    metadata: dict[str, str] = field(default_factory=dict)
    last_modified: Optional[datetime] = None


@dataclass
class StoredObject:
    """
    An object the gateway has resolved.

    policy is None until finalize attaches one. An object without a policy
    is treated as private with no owner, so nobody can read it.
    """
    id: str
    location: ObjectLocation
    size: int = 0
    content_type: str = "application/octet-stream"
    policy: Optional[AclPolicy] = None
    created_at: Optional[datetime] = None

    @property
    def visibility(self) -> Visibility:
        if self.policy is None:
            return Visibility.PRIVATE
        return self.policy.visibility

    @property
    def is_public(self) -> bool:
        return self.visibility == Visibility.PUBLIC


@dataclass(frozen=True)
class UploadGrant:
    """
    A signed, time-limited write capability for exactly one object.

    Never persisted. The signing backend enforces expiry; single use is
    conceptual only.
    """
    object_id: str
    location: ObjectLocation
    url: str
    kind: UploadKind
    expires_at: datetime
    method: str = "PUT"

    @property
    def object_path(self) -> str:
        return f"/objects/{self.object_id}"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at
