"""
Profile repository.

Implements core.accounts.stores.ProfileStore against Postgres, plus an
in-memory version for mock mode and tests. The repository:
1. Translates between ProfileEntry and database rows
2. Encapsulates all SQL queries
3. Turns UNIQUE violations into DuplicateProfileError naming the field

The provisioning coordinator never writes SQL - it asks the repository
for what it needs in domain terms.
"""

import logging
import threading
from dataclasses import replace
from typing import Optional

import psycopg2
from psycopg2.extras import Json

from ....core.accounts.models import ProfileEntry
from ....core.accounts.stores import DuplicateProfileError, ProfileStore
from ..client import PostgresConfig, PostgresConnectionPool

logger = logging.getLogger(__name__)

_PROFILE_COLUMNS = """
    id, email, username, full_name, role, birthday, borough,
    idempotency_key, device_fingerprint, performance_types,
    social_media_links, is_active, is_verified
"""

# Constraint name fragment -> field reported to the caller
_CONSTRAINT_FIELDS = (
    ("idempotency_key", "idempotency_key"),
    ("username", "username"),
    ("email", "email"),
)


def _field_for_violation(error: psycopg2.Error) -> Optional[str]:
    constraint = getattr(getattr(error, "diag", None), "constraint_name", None) or ""
    for fragment, field_name in _CONSTRAINT_FIELDS:
        if fragment in constraint:
            return field_name
    return None


def _row_to_profile(row: dict) -> ProfileEntry:
    return ProfileEntry(
        id=row["id"],
        email=row["email"],
        username=row["username"] or "",
        full_name=row["full_name"] or "",
        role=row["role"] or "",
        birthday=row["birthday"],
        borough=row["borough"] or "",
        idempotency_key=row["idempotency_key"] or "",
        device_fingerprint=row["device_fingerprint"],
        performance_types=row["performance_types"],
        social_media_links=row["social_media_links"],
        is_active=row["is_active"],
        is_verified=row["is_verified"],
    )


class PostgresProfileRepository:
    """Profile rows in Postgres."""

    def __init__(self, pool: PostgresConnectionPool) -> None:
        self._pool = pool

    def find_by_idempotency_key(self, key: str) -> Optional[ProfileEntry]:
        with self._pool.transaction() as cursor:
            cursor.execute(
                f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE idempotency_key = %s",
                (key,),
            )
            row = cursor.fetchone()

        return _row_to_profile(row) if row else None

    def find_conflicts(
        self,
        username: str,
        email: str,
        exclude_key: Optional[str] = None,
    ) -> list[str]:
        with self._pool.transaction() as cursor:
            cursor.execute(
                """
                SELECT lower(username) = lower(%s) AS username_taken,
                       email = %s AS email_taken
                FROM profiles
                WHERE (lower(username) = lower(%s) OR email = %s)
                  AND idempotency_key IS DISTINCT FROM %s
                """,
                (username, email.lower(), username, email.lower(), exclude_key),
            )
            rows = cursor.fetchall()

        conflicts = []
        if any(row["username_taken"] for row in rows):
            conflicts.append("username")
        if any(row["email_taken"] for row in rows):
            conflicts.append("email")
        return conflicts

    def upsert_profile(self, profile: ProfileEntry) -> None:
        """
        One INSERT ... ON CONFLICT (id) DO UPDATE.

        Keyed by id so a stub row written by an auth trigger is absorbed;
        the idempotency_key/username/email constraints still apply.
        """
        try:
            with self._pool.transaction() as cursor:
                cursor.execute(
                    f"""
                    INSERT INTO profiles ({_PROFILE_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                        email = EXCLUDED.email,
                        username = EXCLUDED.username,
                        full_name = EXCLUDED.full_name,
                        role = EXCLUDED.role,
                        birthday = EXCLUDED.birthday,
                        borough = EXCLUDED.borough,
                        idempotency_key = EXCLUDED.idempotency_key,
                        device_fingerprint = EXCLUDED.device_fingerprint,
                        performance_types = EXCLUDED.performance_types,
                        social_media_links = EXCLUDED.social_media_links,
                        is_active = EXCLUDED.is_active,
                        is_verified = EXCLUDED.is_verified,
                        updated_at = now()
                    """,
                    (
                        profile.id,
                        profile.email,
                        profile.username,
                        profile.full_name,
                        profile.role,
                        profile.birthday,
                        profile.borough,
                        profile.idempotency_key,
                        profile.device_fingerprint,
                        profile.performance_types,
                        Json(profile.social_media_links) if profile.social_media_links is not None else None,
                        profile.is_active,
                        profile.is_verified,
                    ),
                )
        except psycopg2.errors.UniqueViolation as e:
            field_name = _field_for_violation(e)
            if field_name is None:
                raise
            logger.info(
                "Profile upsert hit a unique constraint",
                extra={"profile_id": profile.id, "field": field_name}
            )
            raise DuplicateProfileError(field_name, str(e)) from e

    def get_profile(self, profile_id: str) -> Optional[ProfileEntry]:
        with self._pool.transaction() as cursor:
            cursor.execute(
                f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE id = %s",
                (profile_id,),
            )
            row = cursor.fetchone()

        return _row_to_profile(row) if row else None

    def delete_profile(self, profile_id: str) -> bool:
        with self._pool.transaction() as cursor:
            cursor.execute("DELETE FROM profiles WHERE id = %s", (profile_id,))
            deleted = cursor.rowcount > 0

        logger.info(
            "Deleted profile",
            extra={"profile_id": profile_id, "deleted": deleted}
        )
        return deleted

    def ping(self) -> bool:
        return self._pool.ping()

    def close(self) -> None:
        self._pool.close()


# ---------------------------------------------------------------------------
# In-memory repository for local development
# ---------------------------------------------------------------------------

class InMemoryProfileRepository:
    """
    Profile rows in a dictionary.

    Enforces the same UNIQUE constraints as the Postgres schema, checked
    and applied under one lock so concurrent upserts behave like the
    database: exactly one of two conflicting writes succeeds.

    Not suitable for production, but perfect for:
    - Local development
    - Unit tests
    """

    def __init__(self) -> None:
        self._rows: dict[str, ProfileEntry] = {}
        self._lock = threading.Lock()
        logger.info("Initialized in-memory profile store")

    def find_by_idempotency_key(self, key: str) -> Optional[ProfileEntry]:
        with self._lock:
            for row in self._rows.values():
                if row.idempotency_key == key:
                    return replace(row)
        return None

    def find_conflicts(
        self,
        username: str,
        email: str,
        exclude_key: Optional[str] = None,
    ) -> list[str]:
        username_taken = email_taken = False
        with self._lock:
            for row in self._rows.values():
                if exclude_key is not None and row.idempotency_key == exclude_key:
                    continue
                if row.username and row.username.lower() == username.lower():
                    username_taken = True
                if row.email == email.lower():
                    email_taken = True

        conflicts = []
        if username_taken:
            conflicts.append("username")
        if email_taken:
            conflicts.append("email")
        return conflicts

    def upsert_profile(self, profile: ProfileEntry) -> None:
        with self._lock:
            for row in self._rows.values():
                if row.id == profile.id:
                    continue
                if profile.idempotency_key and row.idempotency_key == profile.idempotency_key:
                    raise DuplicateProfileError("idempotency_key")
                if profile.username and row.username.lower() == profile.username.lower():
                    raise DuplicateProfileError("username")
                if row.email == profile.email:
                    raise DuplicateProfileError("email")
            self._rows[profile.id] = replace(profile)

    def get_profile(self, profile_id: str) -> Optional[ProfileEntry]:
        with self._lock:
            row = self._rows.get(profile_id)
            return replace(row) if row else None

    def delete_profile(self, profile_id: str) -> bool:
        with self._lock:
            return self._rows.pop(profile_id, None) is not None

    def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_profile_store(
    config: Optional[PostgresConfig] = None,
    mock_mode: bool = False,
) -> ProfileStore:
    """
    Create the profile store based on configuration.

    Args:
        config: Postgres configuration (required if not mock_mode)
        mock_mode: If True, return the in-memory store
    """
    if mock_mode:
        return InMemoryProfileRepository()

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return PostgresProfileRepository(PostgresConnectionPool(config))
