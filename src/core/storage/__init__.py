"""
Media object storage logic.

Contains the ACL model and store, the access gateway with byte-range
streaming, and the upload URL issuer.
"""

from .acl import AclPolicyStore, can_access
from .gateway import DownloadResponse, GatewayConfig, ObjectAccessGateway
from .models import (
    AccessMode,
    AclPolicy,
    ObjectLocation,
    ObjectMetadata,
    ObjectPermission,
    StoredObject,
    UploadGrant,
    UploadKind,
    Visibility,
)
from .ranges import ByteRange, parse_range_header
from .uploads import UploadURLIssuer

__all__ = [
    "AccessMode",
    "AclPolicy",
    "AclPolicyStore",
    "ByteRange",
    "DownloadResponse",
    "GatewayConfig",
    "ObjectAccessGateway",
    "ObjectLocation",
    "ObjectMetadata",
    "ObjectPermission",
    "StoredObject",
    "UploadGrant",
    "UploadKind",
    "UploadURLIssuer",
    "Visibility",
    "can_access",
    "parse_range_header",
]
