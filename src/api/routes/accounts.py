"""
Account provisioning endpoint.

Thin HTTP wrapper around ProvisioningCoordinator: it maps the JSON body
to a ProvisioningRequest and the result to a response. Every failure is a
BuskerError rendered by the handlers in main.py.

Clients must send a fresh idempotency_key per registration attempt and
reuse it on retry; a retried request returns the same account.
"""

import logging
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from ...core.accounts import ProvisioningRequest
from ..dependencies import ServicesDep

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class CreateAccountRequest(BaseModel):
    """
    Registration form.

    Types are loose on purpose: field rules are checked all at once by the
    coordinator so the client gets every violation in one response.
    """
    idempotency_key: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    username: Optional[str] = None
    full_name: Optional[str] = None
    birthday: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    borough: Optional[str] = Field(default=None, description="MN, BK, BX, QN, SI or VISITOR")
    role: Optional[str] = Field(default=None, description="street_performer or new_yorker")
    tos_accepted: bool = False
    device_fingerprint: Optional[str] = None

    # Performers only
    performance_types: list[str] = Field(default_factory=list)
    socials_instagram: Optional[str] = None
    socials_tiktok: Optional[str] = None
    socials_youtube: Optional[str] = None
    socials_x: Optional[str] = None
    socials_snapchat: Optional[str] = None
    socials_facebook: Optional[str] = None
    socials_soundcloud: Optional[str] = None
    socials_spotify: Optional[str] = None

    def to_provisioning_request(self) -> ProvisioningRequest:
        return ProvisioningRequest(
            idempotency_key=self.idempotency_key,
            email=self.email,
            password=self.password,
            username=self.username,
            full_name=self.full_name,
            birthday=self.birthday,
            borough=self.borough,
            role=self.role,
            tos_accepted=self.tos_accepted,
            device_fingerprint=self.device_fingerprint,
            performance_types=list(self.performance_types),
            socials={
                name[len("socials_"):]: value
                for name, value in self.model_dump().items()
                if name.startswith("socials_")
            },
        )


class SessionResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int
    user_id: str


class CreateAccountResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_id: str = Field(alias="accountId")
    session: SessionResponse
    idempotent: bool = Field(description="True if this replayed an earlier request with the same key")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/accounts",
    response_model=CreateAccountResponse,
    summary="Create an account",
    description="Atomically creates the identity and profile, or replays the account for a reused idempotency key.",
    responses={
        401: {"description": "Idempotent replay with wrong credentials"},
        422: {"description": "Validation failure or username/email conflict"},
        500: {"description": "Creation failed; any partial records were rolled back"},
    },
)
def create_account(body: CreateAccountRequest, services: ServicesDep) -> CreateAccountResponse:
    result = services.coordinator.provision(body.to_provisioning_request())

    return CreateAccountResponse(
        account_id=result.account_id,
        session=SessionResponse(**result.session.as_dict()),
        idempotent=result.idempotent,
    )
