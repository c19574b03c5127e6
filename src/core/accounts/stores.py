"""
Interfaces the provisioning flow needs from its two backing stores.

The identity store (managed auth service) and the profile store (managed
Postgres) fail independently; nothing spans both in one transaction. The
coordinator compensates across them instead.
"""

from typing import Optional, Protocol

from .models import IdentityEntry, ProfileEntry, Session


class IdentityConflictError(Exception):
    """The identity service already has a user with this email."""
    pass


class DuplicateProfileError(Exception):
    """
    A UNIQUE constraint of the profile store rejected a write.

    field is one of "idempotency_key", "username", "email".
    """

    def __init__(self, field: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Duplicate {field}")
        self.field = field


class IdentityStore(Protocol):
    """Credential records and sessions."""

    def create_identity(self, email: str, password: str, metadata: dict) -> IdentityEntry:
        """Create a confirmed user. Raises IdentityConflictError for a taken email."""
        ...

    def get_identity(self, identity_id: str) -> Optional[IdentityEntry]:
        ...

    def delete_identity(self, identity_id: str) -> None:
        ...

    def sign_in(self, email: str, password: str) -> Session:
        """Password sign-in. Raises AuthError on bad credentials."""
        ...

    def resolve_token(self, access_token: str) -> Optional[str]:
        """User id for a valid access token, None otherwise."""
        ...


class ProfileStore(Protocol):
    """
    Profile rows, with UNIQUE constraints on idempotency_key,
    lower(username) and email enforced by the store itself.
    """

    def find_by_idempotency_key(self, key: str) -> Optional[ProfileEntry]:
        ...

    def find_conflicts(
        self,
        username: str,
        email: str,
        exclude_key: Optional[str] = None,
    ) -> list[str]:
        """
        Fields ("username", "email") already taken by another profile.

        Username comparison is case-insensitive. Rows carrying exclude_key
        are ignored.
        """
        ...

    def upsert_profile(self, profile: ProfileEntry) -> None:
        """
        Insert or overwrite the row keyed by profile.id in one atomic
        statement. Raises DuplicateProfileError on a UNIQUE violation.
        """
        ...

    def get_profile(self, profile_id: str) -> Optional[ProfileEntry]:
        ...

    def delete_profile(self, profile_id: str) -> bool:
        ...
