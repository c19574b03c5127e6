"""
Idempotency ledger for account provisioning.

The ledger has no table or lock of its own: an entry is the
idempotency_key column of the profile row, written by the same atomic
upsert that commits the profile. Whoever's upsert succeeds owns the key;
everyone else gets a UNIQUE violation and must read the winner's entry.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .models import ProfileEntry
from .stores import DuplicateProfileError, ProfileStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerEntry:
    """key -> account id, plus the email the account signs in with."""
    key: str
    account_id: str
    email: str


class KeyAlreadyClaimed(Exception):
    """Another request committed a profile with this idempotency key first."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Idempotency key already claimed: {key}")
        self.key = key


class IdempotencyLedger:
    """Lookup and claim of idempotency keys, delegated to the profile store."""

    def __init__(
        self,
        profiles: ProfileStore,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._profiles = profiles
        self._sleep = sleep

    def lookup(self, key: str) -> Optional[LedgerEntry]:
        profile = self._profiles.find_by_idempotency_key(key)
        if profile is None:
            return None
        return LedgerEntry(key=key, account_id=profile.id, email=profile.email)

    def commit_with_profile(self, profile: ProfileEntry) -> LedgerEntry:
        """
        Commit the profile row and claim its idempotency key in one write.

        Raises KeyAlreadyClaimed if the key belongs to another row.
        DuplicateProfileError for username/email propagates unchanged.
        """
        try:
            self._profiles.upsert_profile(profile)
        except DuplicateProfileError as e:
            if e.field == "idempotency_key":
                raise KeyAlreadyClaimed(profile.idempotency_key) from e
            raise

        return LedgerEntry(key=profile.idempotency_key, account_id=profile.id, email=profile.email)

    def await_entry(
        self,
        key: str,
        attempts: int,
        interval_seconds: float,
        give_up: Optional[Callable[[], bool]] = None,
    ) -> Optional[LedgerEntry]:
        """
        Poll for the entry of a key that a concurrent request is committing.

        Returns None if the entry has not appeared after `attempts` lookups
        (the other request may have failed and rolled back), or as soon as
        give_up() says waiting is pointless.
        """
        attempts = max(attempts, 1)
        for attempt in range(attempts):
            entry = self.lookup(key)
            if entry is not None:
                logger.debug(
                    "Ledger entry appeared",
                    extra={"idempotency_key": key, "attempt": attempt + 1}
                )
                return entry
            if give_up is not None and give_up():
                return None
            if attempt < attempts - 1:
                self._sleep(interval_seconds)

        return None
