"""
Identity service client.

Wraps the Supabase Auth (GoTrue) REST API: admin user management with the
service-role key, password sign-in and access-token lookup with the anon
key. Implements core.accounts.stores.IdentityStore.

Mock mode keeps users and tokens in memory so the provisioning flow and
the authenticated endpoints can be exercised without a Supabase project.
"""

import logging
import secrets
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx

from ...core.accounts.models import IdentityEntry, Session
from ...core.accounts.stores import IdentityConflictError, IdentityStore
from ...core.errors import AuthError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class IdentityServiceError(Exception):
    """The identity service answered with an unexpected status."""
    pass


@dataclass
class IdentityConfig:
    """Configuration for the Supabase Auth API."""
    url: str
    service_role_key: str
    anon_key: str
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS


def _parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


def _is_email_conflict(response: httpx.Response) -> bool:
    if response.status_code not in (400, 409, 422):
        return False
    try:
        body = response.json()
    except ValueError:
        return False
    code = str(body.get("error_code") or body.get("code") or "")
    message = str(body.get("msg") or body.get("message") or "").lower()
    return code == "email_exists" or "already" in message


class SupabaseIdentityClient:
    """
    Supabase Auth admin + session client over httpx.

    A single httpx.Client is shared across request threads; it is
    thread-safe and keeps connections alive between calls.
    """

    def __init__(self, config: IdentityConfig, http_client: Optional[httpx.Client] = None) -> None:
        self._config = config
        self._http = http_client or httpx.Client(
            base_url=config.url.rstrip("/"),
            timeout=config.timeout_seconds,
        )

        logger.info(
            "Initialized Supabase identity client",
            extra={"url": config.url}
        )

    def _admin_headers(self) -> dict[str, str]:
        return {
            "apikey": self._config.service_role_key,
            "Authorization": f"Bearer {self._config.service_role_key}",
        }

    def create_identity(self, email: str, password: str, metadata: dict) -> IdentityEntry:
        response = self._http.post(
            "/auth/v1/admin/users",
            headers=self._admin_headers(),
            json={
                "email": email,
                "password": password,
                "email_confirm": True,
                "user_metadata": metadata,
            },
        )

        if _is_email_conflict(response):
            raise IdentityConflictError(f"Email already registered: {email}")
        if response.status_code >= 400:
            logger.error(
                "Identity creation rejected",
                extra={"status_code": response.status_code}
            )
            raise IdentityServiceError(f"Create user failed with {response.status_code}")

        user = response.json()
        logger.info("Created identity", extra={"account_id": user["id"]})
        return IdentityEntry(
            id=user["id"],
            email=user.get("email") or email,
            created_at=_parse_timestamp(user.get("created_at")),
        )

    def get_identity(self, identity_id: str) -> Optional[IdentityEntry]:
        response = self._http.get(
            f"/auth/v1/admin/users/{identity_id}",
            headers=self._admin_headers(),
        )
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise IdentityServiceError(f"Get user failed with {response.status_code}")

        user = response.json()
        return IdentityEntry(
            id=user["id"],
            email=user.get("email") or "",
            created_at=_parse_timestamp(user.get("created_at")),
        )

    def delete_identity(self, identity_id: str) -> None:
        """Delete a user. An already-missing user counts as deleted."""
        response = self._http.delete(
            f"/auth/v1/admin/users/{identity_id}",
            headers=self._admin_headers(),
        )
        if response.status_code == 404:
            return
        if response.status_code >= 400:
            raise IdentityServiceError(f"Delete user failed with {response.status_code}")

        logger.info("Deleted identity", extra={"account_id": identity_id})

    def sign_in(self, email: str, password: str) -> Session:
        response = self._http.post(
            "/auth/v1/token",
            params={"grant_type": "password"},
            headers={"apikey": self._config.anon_key},
            json={"email": email, "password": password},
        )
        if response.status_code in (400, 401):
            raise AuthError("Invalid email or password", code="INVALID_CREDENTIALS")
        if response.status_code >= 400:
            raise IdentityServiceError(f"Sign-in failed with {response.status_code}")

        body = response.json()
        return Session(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token", ""),
            user_id=body["user"]["id"],
            token_type=body.get("token_type", "bearer"),
            expires_in=int(body.get("expires_in", 3600)),
        )

    def resolve_token(self, access_token: str) -> Optional[str]:
        response = self._http.get(
            "/auth/v1/user",
            headers={
                "apikey": self._config.anon_key,
                "Authorization": f"Bearer {access_token}",
            },
        )
        if response.status_code in (401, 403, 404):
            return None
        if response.status_code >= 400:
            raise IdentityServiceError(f"Token lookup failed with {response.status_code}")

        return response.json().get("id")

    def ping(self) -> bool:
        try:
            response = self._http.get("/auth/v1/health", headers={"apikey": self._config.anon_key})
        except httpx.HTTPError as e:
            logger.warning("Identity service ping failed", extra={"error": str(e)})
            return False
        return response.status_code < 500

    def close(self) -> None:
        self._http.close()


# ---------------------------------------------------------------------------
# Mock Identity Service for Local Development
# ---------------------------------------------------------------------------

@dataclass
class _MockUser:
    id: str
    email: str
    password: str
    metadata: dict
    created_at: datetime


class MockIdentityClient:
    """
    In-memory identity service.

    Emails are unique (case-insensitive) like the real service, and
    sign_in() issues random bearer tokens that resolve_token() accepts
    until they expire.
    The lock only emulates the atomicity of the real service.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._users: dict[str, _MockUser] = {}
        self._tokens: dict[str, tuple[str, float]] = {}
        self._clock = clock
        self._lock = threading.Lock()
        logger.info("Initialized mock identity client (in-memory)")

    def create_identity(self, email: str, password: str, metadata: dict) -> IdentityEntry:
        email = email.lower()
        with self._lock:
            if any(user.email == email for user in self._users.values()):
                raise IdentityConflictError(f"Email already registered: {email}")
            user = _MockUser(
                id=secrets.token_hex(16),
                email=email,
                password=password,
                metadata=dict(metadata),
                created_at=datetime.now(timezone.utc),
            )
            self._users[user.id] = user

        return IdentityEntry(id=user.id, email=user.email, created_at=user.created_at)

    def get_identity(self, identity_id: str) -> Optional[IdentityEntry]:
        with self._lock:
            user = self._users.get(identity_id)
        if user is None:
            return None
        return IdentityEntry(id=user.id, email=user.email, created_at=user.created_at)

    def delete_identity(self, identity_id: str) -> None:
        with self._lock:
            self._users.pop(identity_id, None)
            for token in [t for t, (uid, _) in self._tokens.items() if uid == identity_id]:
                del self._tokens[token]

    def sign_in(self, email: str, password: str) -> Session:
        email = email.lower()
        with self._lock:
            user = next((u for u in self._users.values() if u.email == email), None)
            if user is None or user.password != password:
                raise AuthError("Invalid email or password", code="INVALID_CREDENTIALS")
            session = Session(
                access_token=secrets.token_urlsafe(24),
                refresh_token=secrets.token_urlsafe(24),
                user_id=user.id,
            )
            self._prune_tokens()
            self._tokens[session.access_token] = (user.id, self._clock() + session.expires_in)

        return session

    def resolve_token(self, access_token: str) -> Optional[str]:
        with self._lock:
            grant = self._tokens.get(access_token)
        if grant is None:
            return None
        user_id, expires_at = grant
        return user_id if self._clock() < expires_at else None

    def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._users)

    def _prune_tokens(self) -> None:
        """Drop expired access tokens. Caller holds the lock."""
        now = self._clock()
        for token in [t for t, (_, expires_at) in self._tokens.items() if now >= expires_at]:
            del self._tokens[token]


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_identity_client(
    config: Optional[IdentityConfig] = None,
    mock_mode: bool = False,
) -> IdentityStore:
    """
    Create the identity client based on configuration.

    Args:
        config: Supabase configuration (required if not mock_mode)
        mock_mode: If True, return the in-memory client
    """
    if mock_mode:
        return MockIdentityClient()

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return SupabaseIdentityClient(config)
