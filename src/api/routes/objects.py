"""
Stored object endpoints: finalize, metadata and byte-range download.

Downloads stream through the API so that every read passes the ACL check;
the body iterator is synchronous and Starlette drains it in the
threadpool, pulling one chunk at a time from the storage backend.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Header, Response
from fastapi.responses import StreamingResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ...core.errors import AuthError, NotFoundError
from ...core.storage import AccessMode, DownloadResponse, Visibility
from ..dependencies import AuthenticatedUser, OptionalUser, ServicesDep

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class FinalizeRequest(BaseModel):
    """ACL to attach to a freshly uploaded object."""
    owner_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ownerId", "owner_id"),
        description="Must be the caller if given; defaults to the caller",
    )
    visibility: Visibility = Field(
        default=Visibility.PRIVATE,
        description="public or private"
    )


class FinalizeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    object_path: str = Field(alias="objectPath")
    owner_id: str = Field(alias="ownerId")
    visibility: Visibility


def _to_http(download: DownloadResponse) -> Response:
    if download.body is None:
        return Response(status_code=download.status_code, headers=download.headers)
    return StreamingResponse(
        download.body,
        status_code=download.status_code,
        headers=download.headers,
        media_type=download.headers.get("Content-Type"),
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/objects/{object_id}/finalize",
    response_model=FinalizeResponse,
    summary="Finalize an upload",
    description="Attach owner and visibility to an uploaded object, once. Repeating the same request is safe.",
    responses={
        401: {"description": "Not the caller, or the object belongs to another user"},
        422: {"description": "Object was already finalized with a different visibility"},
        500: {"description": "Object not uploaded yet, or storage failure"},
    },
)
def finalize_object(
    object_id: str,
    body: FinalizeRequest,
    user_id: AuthenticatedUser,
    services: ServicesDep,
) -> FinalizeResponse:
    if body.owner_id is not None and body.owner_id != user_id:
        logger.warning(
            "Finalize refused: owner differs from caller",
            extra={"object_id": object_id, "requester_id": user_id}
        )
        raise AuthError("Cannot finalize an object on behalf of another user")

    stored = services.gateway.finalize(object_id, owner_id=user_id, visibility=body.visibility)

    logger.info(
        "Finalized object",
        extra={"object_id": object_id, "owner_id": user_id, "visibility": body.visibility.value}
    )

    return FinalizeResponse(
        object_path=f"/objects/{stored.id}",
        owner_id=user_id,
        visibility=body.visibility,
    )


@router.head(
    "/objects/{object_id}",
    summary="Object metadata",
    description="Size, type and caching headers. No body, Range is ignored.",
)
def head_object(object_id: str, services: ServicesDep) -> Response:
    stored = services.gateway.resolve(f"/objects/{object_id}", mode=AccessMode.STRICT)
    return _to_http(services.gateway.head(stored))


@router.get(
    "/objects/{object_id}",
    summary="Download an object",
    description="Streams the object; honors a single `Range: bytes=start-end` for video seeking.",
    responses={
        206: {"description": "Partial content"},
        401: {"description": "Not allowed to read this object"},
        404: {"description": "Unknown object"},
        416: {"description": "Range not satisfiable"},
    },
)
def download_object(
    object_id: str,
    services: ServicesDep,
    user_id: OptionalUser,
    range_header: Annotated[Optional[str], Header(alias="Range")] = None,
) -> Response:
    gateway = services.gateway
    stored = gateway.resolve(f"/objects/{object_id}", mode=AccessMode.STRICT)
    gateway.authorize(stored, user_id)
    return _to_http(gateway.download(stored, range_header))


@router.get(
    "/public-objects/{file_path:path}",
    summary="Download public content",
    description="Looks the path up under each configured public prefix. No authentication.",
)
def download_public_object(
    file_path: str,
    services: ServicesDep,
    range_header: Annotated[Optional[str], Header(alias="Range")] = None,
) -> Response:
    stored = services.gateway.search_public(file_path)
    if stored is None:
        raise NotFoundError("File not found")
    return _to_http(services.gateway.download(stored, range_header))
