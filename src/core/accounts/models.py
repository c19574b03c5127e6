"""
Domain models for account provisioning.

An account is a pair of records living in two independently-failable
stores: the identity (credential) record and the profile row. The pair
exists together or not at all.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional


class Role(Enum):
    STREET_PERFORMER = "street_performer"
    NEW_YORKER = "new_yorker"


class Borough(Enum):
    MANHATTAN = "MN"
    BROOKLYN = "BK"
    BRONX = "BX"
    QUEENS = "QN"
    STATEN_ISLAND = "SI"
    VISITOR = "VISITOR"


# Social platforms a performer can list; at least one handle is required
SOCIAL_PLATFORMS = (
    "instagram",
    "tiktok",
    "youtube",
    "x",
    "snapchat",
    "facebook",
    "soundcloud",
    "spotify",
)


class ProvisioningState(Enum):
    """
    States of one provisioning attempt.

    RECEIVED -> VALIDATED -> {IDEMPOTENT_HIT | REJECTED_INVALID | REJECTED_CONFLICT}
             -> IDENTITY_CREATED -> {PROFILE_COMMITTED -> VERIFIED | ROLLED_BACK}
    """
    RECEIVED = "received"
    VALIDATED = "validated"
    IDEMPOTENT_HIT = "idempotent_hit"
    REJECTED_INVALID = "rejected_invalid"
    REJECTED_CONFLICT = "rejected_conflict"
    IDENTITY_CREATED = "identity_created"
    PROFILE_COMMITTED = "profile_committed"
    VERIFIED = "verified"
    ROLLED_BACK = "rolled_back"


@dataclass
class ProvisioningRequest:
    """
    Everything a client sends to create an account.

    Fields are deliberately loose (mostly optional strings): validation
    happens in one pass in validation.py so every violation is reported.
    """
    idempotency_key: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    username: Optional[str] = None
    full_name: Optional[str] = None
    birthday: Optional[str] = None
    borough: Optional[str] = None
    role: Optional[str] = None
    tos_accepted: bool = False
    device_fingerprint: Optional[str] = None
    performance_types: list[str] = field(default_factory=list)
    socials: dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def normalized_email(self) -> str:
        return (self.email or "").strip().lower()

    @property
    def is_performer(self) -> bool:
        return self.role == Role.STREET_PERFORMER.value

    def social_links(self) -> dict[str, str]:
        """Non-empty handles keyed by platform, in platform order."""
        links = {}
        for platform in SOCIAL_PLATFORMS:
            handle = (self.socials.get(platform) or "").strip()
            if handle:
                links[platform] = handle
        return links


@dataclass(frozen=True)
class IdentityEntry:
    """The credential record held by the identity service."""
    id: str
    email: str
    created_at: Optional[datetime] = None


@dataclass
class ProfileEntry:
    """The application profile row, keyed by the identity id."""
    id: str
    email: str
    username: str
    full_name: str
    role: str
    birthday: date
    borough: str
    idempotency_key: str
    device_fingerprint: Optional[str] = None
    performance_types: Optional[list[str]] = None
    social_media_links: Optional[dict[str, str]] = None
    is_active: bool = True
    is_verified: bool = False

    @classmethod
    def from_request(cls, identity_id: str, request: ProvisioningRequest, birthday: date) -> "ProfileEntry":
        """Build the profile row for a validated request."""
        performer = request.is_performer
        return cls(
            id=identity_id,
            email=request.normalized_email,
            username=(request.username or "").strip(),
            full_name=(request.full_name or "").strip(),
            role=request.role or "",
            birthday=birthday,
            borough=request.borough or "",
            idempotency_key=request.idempotency_key or "",
            device_fingerprint=request.device_fingerprint or None,
            performance_types=list(request.performance_types) if performer else None,
            social_media_links=request.social_links() if performer else None,
        )


@dataclass(frozen=True)
class Session:
    """Credential returned to the client after provisioning."""
    access_token: str
    refresh_token: str
    user_id: str
    token_type: str = "bearer"
    expires_in: int = 3600

    def as_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "user_id": self.user_id,
        }


@dataclass(frozen=True)
class ProvisioningResult:
    """Successful outcome: a verified new account, or an idempotent replay."""
    account_id: str
    session: Session
    state: ProvisioningState

    @property
    def idempotent(self) -> bool:
        return self.state == ProvisioningState.IDEMPOTENT_HIT
