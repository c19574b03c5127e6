"""
Object ACL policies: evaluation and persistence.

The policy lives in the object's own user metadata, so attaching it is one
atomic metadata replacement and there is no second store to keep in sync.
"""

import logging
from typing import Optional

from ..errors import NotFoundError, StorageError
from .backend import StorageBackend
from .models import (
    AccessMode,
    AclPolicy,
    ObjectLocation,
    ObjectPermission,
    Visibility,
)

logger = logging.getLogger(__name__)

# S3 user metadata key (sent as x-amz-meta-acl-policy)
ACL_POLICY_METADATA_KEY = "acl-policy"


def can_access(
    policy: Optional[AclPolicy],
    requester_id: Optional[str],
    permission: ObjectPermission = ObjectPermission.READ,
) -> bool:
    """
    Decide whether `requester_id` may exercise `permission` on an object.

    - public objects are readable by anyone, including anonymous requesters
    - everything else requires being the owner
    - an object without a policy is private with no owner: nobody passes

    Follower-based read access would slot in here; it is not implemented.
    """
    if policy is None:
        return False

    if permission == ObjectPermission.READ and policy.visibility == Visibility.PUBLIC:
        return True

    if not requester_id:
        return False

    return requester_id == policy.owner


def policy_from_metadata(metadata: dict[str, str]) -> Optional[AclPolicy]:
    """Extract the ACL policy from user metadata. Unreadable policies count as absent."""
    raw = metadata.get(ACL_POLICY_METADATA_KEY)
    if not raw:
        return None

    try:
        return AclPolicy.from_json(raw)
    except (ValueError, KeyError, TypeError) as e:
        logger.warning(
            "Ignoring unreadable ACL policy",
            extra={"raw_policy": raw[:200], "error": str(e)}
        )
        return None


class AclPolicyStore:
    """
    Reads and writes ACL policies on stored objects.

    This is the only component that writes the acl-policy metadata key.
    """

    def __init__(self, backend: StorageBackend) -> None:
        self._backend = backend

    def get_policy(self, location: ObjectLocation) -> Optional[AclPolicy]:
        """Return the object's policy, or None (treated as private) if absent."""
        metadata = self._backend.head(location)
        if metadata is None:
            return None
        return policy_from_metadata(metadata.metadata)

    def set_policy(
        self,
        location: ObjectLocation,
        policy: AclPolicy,
        mode: AccessMode = AccessMode.OPTIMISTIC,
    ) -> None:
        """
        Attach `policy` to the object in one atomic metadata write.

        OPTIMISTIC (the finalize path): the caller has just confirmed the
        upload, so no existence check is made; the backing store may not show
        the object yet. If the write itself reports the object missing, that
        is a genuine StorageError.

        STRICT: the object must already be visible, otherwise NotFoundError.
        """
        if mode == AccessMode.STRICT and self._backend.head(location) is None:
            raise NotFoundError("Object not found")

        try:
            self._backend.update_metadata(
                location,
                {ACL_POLICY_METADATA_KEY: policy.to_json()},
            )
        except NotFoundError as e:
            logger.error(
                "Object asserted to exist was not found while setting ACL policy",
                extra={"location": str(location), "mode": mode.value}
            )
            raise StorageError(f"Failed to set ACL policy: object {location} missing") from e

        logger.info(
            "ACL policy set",
            extra={
                "location": str(location),
                "owner": policy.owner,
                "visibility": policy.visibility.value,
                "mode": mode.value,
            }
        )
