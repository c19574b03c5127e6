"""
Upload capability endpoint.

Clients never stream video through this API. They ask for a signed PUT
URL, upload straight to object storage, then finalize the object (see
objects.py) to attach its owner and visibility.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from ...core.storage import UploadKind
from ..dependencies import AuthenticatedUser, ServicesDep

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class UploadURLRequest(BaseModel):
    """What the client intends to upload."""
    kind: UploadKind = Field(
        default=UploadKind.VIDEO,
        description="video or thumbnail"
    )


class UploadURLResponse(BaseModel):
    """A short-lived PUT capability for one brand-new object."""
    model_config = ConfigDict(populate_by_name=True)

    upload_url: str = Field(alias="uploadURL", description="Signed PUT URL")
    object_id: str = Field(alias="objectId", description="Id of the object to be created")
    object_path: str = Field(alias="objectPath", description="Logical path, /objects/<id>")
    expires_at: datetime = Field(alias="expiresAt", description="When the URL stops accepting writes")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/upload-url",
    response_model=UploadURLResponse,
    summary="Request an upload URL",
    description="Returns a signed PUT URL valid for 15 minutes, scoped to one new object.",
)
def request_upload_url(
    user_id: AuthenticatedUser,
    services: ServicesDep,
    body: Optional[UploadURLRequest] = None,
) -> UploadURLResponse:
    kind = body.kind if body else UploadKind.VIDEO
    grant = services.uploads.issue(kind, requester_id=user_id)

    return UploadURLResponse(
        upload_url=grant.url,
        object_id=grant.object_id,
        object_path=grant.object_path,
        expires_at=grant.expires_at,
    )
