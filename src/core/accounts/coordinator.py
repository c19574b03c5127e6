"""
Atomic, idempotent account provisioning.

Creating an account means writing two records in two stores that cannot
share a transaction: the identity (credential) record and the profile row.
The coordinator makes the pair behave as one unit:

1. Validate everything up front (no side effects)
2. Replay the original result if the idempotency key was already used
3. Pre-check username/email uniqueness (an optimization only)
4. Create the identity record
5. Commit the profile row and claim the idempotency key in one upsert
6. Re-read both records; on any mismatch, compensate both
7. Issue a session

Correctness under concurrency does not come from a lock here. It comes
from the profile store's UNIQUE constraints: when two requests race, one
upsert wins and the loser compensates its own identity record, then
follows the winner's ledger entry.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional
from uuid import uuid4

from ..errors import (
    AuthError,
    BuskerError,
    ConflictError,
    ConsistencyError,
    FieldError,
    InternalError,
    StorageError,
    ValidationError,
)
from .compensation import CompensatingAction, CompensationOutcome, run_compensations
from .ledger import IdempotencyLedger, KeyAlreadyClaimed, LedgerEntry
from .models import (
    IdentityEntry,
    ProfileEntry,
    ProvisioningRequest,
    ProvisioningResult,
    ProvisioningState,
    Session,
)
from .stores import DuplicateProfileError, IdentityConflictError, IdentityStore, ProfileStore
from .validation import parse_birthday, validate_request

logger = logging.getLogger(__name__)

_CONFLICT_ERRORS = {
    "username": FieldError("username", "USERNAME_EXISTS", "Username already taken"),
    "email": FieldError("email", "EMAIL_EXISTS", "Email already registered"),
    "idempotency_key": FieldError(
        "idempotency_key", "IDEMPOTENCY_KEY_IN_USE",
        "A registration with this idempotency key is still in progress; retry with the same key",
    ),
}


@dataclass
class CoordinatorConfig:
    """
    How long a request that lost a race waits for the winner's ledger entry.

    The winner still has to finish its profile commit, so the wait must
    cover one identity round trip plus one database write.
    """
    race_wait_attempts: int = 20
    race_wait_interval_seconds: float = 0.1


class ProvisioningCoordinator:
    """Orchestrates validated, idempotent, rollback-safe account creation."""

    def __init__(
        self,
        identities: IdentityStore,
        profiles: ProfileStore,
        ledger: Optional[IdempotencyLedger] = None,
        config: Optional[CoordinatorConfig] = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._identities = identities
        self._profiles = profiles
        self._ledger = ledger or IdempotencyLedger(profiles)
        self._config = config or CoordinatorConfig()
        self._today = today

    def provision(self, request: ProvisioningRequest) -> ProvisioningResult:
        """
        Create the identity+profile pair for `request`, or replay the
        account already created under its idempotency key.

        Raises ValidationError/ConflictError (no side effects), AuthError
        (replay with the wrong password), StorageError/ConsistencyError
        (after compensation) or InternalError.
        """
        context = {
            "request_id": uuid4().hex[:12],
            "idempotency_key": request.idempotency_key,
        }
        self._transition(ProvisioningState.RECEIVED, context, username=request.username, role=request.role)

        # Step 1: batch validation
        errors = validate_request(request, today=self._today())
        if errors:
            self._transition(
                ProvisioningState.REJECTED_INVALID, context,
                violations=[error.code for error in errors],
            )
            raise ValidationError(errors)

        birthday = parse_birthday(request.birthday)
        key = request.idempotency_key.strip()
        email = request.normalized_email
        username = request.username.strip()
        self._transition(ProvisioningState.VALIDATED, context)

        # Step 2: idempotency lookup
        entry = self._ledger.lookup(key)
        if entry is not None:
            return self._replay(entry, request, context)

        # Step 3: uniqueness pre-check (the store's constraints are authoritative)
        conflicts = self._profiles.find_conflicts(username, email, exclude_key=key)
        if conflicts:
            self._transition(ProvisioningState.REJECTED_CONFLICT, context, fields=conflicts)
            raise ConflictError(_CONFLICT_ERRORS[conflicts[0]])

        # Step 4: identity creation (irreversible until compensated)
        try:
            identity = self._identities.create_identity(
                email,
                request.password,
                {"username": username, "registration_source": "provisioning-coordinator"},
            )
        except IdentityConflictError:
            logger.info("Identity already exists for email, checking for a concurrent winner", extra=context)
            return self._follow_winner(request, context)
        except BuskerError:
            raise
        except Exception as e:
            logger.error("Identity creation failed", extra={**context, "error": str(e)})
            raise StorageError("Failed to create auth user", code="AUTH_CREATION_FAILED") from e

        context["account_id"] = identity.id
        self._transition(ProvisioningState.IDENTITY_CREATED, context)

        # Step 5: profile + ledger entry in one atomic upsert
        profile = ProfileEntry.from_request(identity.id, request, birthday)
        try:
            self._ledger.commit_with_profile(profile)
        except (KeyAlreadyClaimed, DuplicateProfileError) as e:
            contested = "idempotency_key" if isinstance(e, KeyAlreadyClaimed) else e.field
            logger.info(
                "Profile commit lost a uniqueness race",
                extra={**context, "contested_field": contested}
            )
            self._rollback(context, [self._delete_identity_action(identity.id)])
            return self._follow_winner(request, context)
        except Exception as e:
            logger.error("Profile commit failed", extra={**context, "error": str(e)})
            outcomes = self._rollback(context, [self._delete_identity_action(identity.id)])
            error = StorageError("Failed to create user profile", code="PROFILE_CREATION_FAILED")
            error.compensations = outcomes
            raise error from e

        self._transition(ProvisioningState.PROFILE_COMMITTED, context)

        # Step 6: post-commit verification
        problem = self._verify(identity, profile)
        if problem is not None:
            logger.error("Post-commit verification failed", extra={**context, "problem": problem})
            outcomes = self._rollback(context, [
                self._delete_profile_action(identity.id),
                self._delete_identity_action(identity.id),
            ])
            error = ConsistencyError("Post-creation verification failed")
            error.compensations = outcomes
            raise error

        self._transition(ProvisioningState.VERIFIED, context)

        # Step 7: session issuance
        session = self._issue_session(email, request.password, context)
        return ProvisioningResult(
            account_id=identity.id,
            session=session,
            state=ProvisioningState.VERIFIED,
        )

    # -----------------------------------------------------------------------
    # Idempotent replay and race resolution
    # -----------------------------------------------------------------------

    def _replay(
        self,
        entry: LedgerEntry,
        request: ProvisioningRequest,
        context: dict,
    ) -> ProvisioningResult:
        """Return the already-created account with a fresh session. Creates nothing."""
        try:
            session = self._identities.sign_in(entry.email, request.password)
        except AuthError:
            logger.warning(
                "Idempotent replay rejected: credentials do not match the account",
                extra={**context, "account_id": entry.account_id}
            )
            raise
        except Exception as e:
            logger.error(
                "Session creation failed for idempotent request",
                extra={**context, "account_id": entry.account_id, "error": str(e)}
            )
            raise InternalError(
                "User exists but session creation failed", code="SESSION_FAILED"
            ) from e

        self._transition(ProvisioningState.IDEMPOTENT_HIT, context, account_id=entry.account_id)
        return ProvisioningResult(
            account_id=entry.account_id,
            session=session,
            state=ProvisioningState.IDEMPOTENT_HIT,
        )

    def _follow_winner(
        self,
        request: ProvisioningRequest,
        context: dict,
    ) -> ProvisioningResult:
        """
        After losing a uniqueness race, wait for the winner's ledger entry.

        Same key: the winner's account is replayed. A different key holding
        the username/email: ConflictError on that field. Otherwise the
        holder is an in-flight request with this same key, and running out
        of time is reported as IDEMPOTENCY_KEY_IN_USE so the client retries
        the key.
        """
        key = request.idempotency_key.strip()
        username = request.username.strip()
        email = request.normalized_email

        def taken_by_other_key() -> bool:
            return bool(self._profiles.find_conflicts(username, email, exclude_key=key))

        entry = self._ledger.await_entry(
            key,
            attempts=self._config.race_wait_attempts,
            interval_seconds=self._config.race_wait_interval_seconds,
            give_up=taken_by_other_key,
        )
        if entry is not None:
            return self._replay(entry, request, context)

        conflicts = self._profiles.find_conflicts(username, email, exclude_key=key)
        field = conflicts[0] if conflicts else "idempotency_key"
        self._transition(ProvisioningState.REJECTED_CONFLICT, context, fields=conflicts or [field])
        raise ConflictError(_CONFLICT_ERRORS[field])

    # -----------------------------------------------------------------------
    # Verification, compensation, session
    # -----------------------------------------------------------------------

    def _verify(self, identity: IdentityEntry, profile: ProfileEntry) -> Optional[str]:
        """Re-read both records independently. Returns a problem description or None."""
        try:
            stored_identity = self._identities.get_identity(identity.id)
        except Exception as e:
            return f"identity re-read failed: {e}"

        try:
            stored_profile = self._profiles.get_profile(profile.id)
        except Exception as e:
            return f"profile re-read failed: {e}"

        if stored_identity is None:
            return "identity record missing"
        if stored_profile is None:
            return "profile record missing"
        if stored_profile.id != stored_identity.id:
            return "profile id does not match identity id"
        if stored_identity.email.lower() != stored_profile.email:
            return "email mismatch between identity and profile"
        if stored_profile.idempotency_key != profile.idempotency_key:
            return "idempotency key mismatch"
        return None

    def _rollback(self, context: dict, actions: list[CompensatingAction]) -> list[CompensationOutcome]:
        outcomes = run_compensations(actions, context=context)
        self._transition(
            ProvisioningState.ROLLED_BACK, context,
            compensations={outcome.name: outcome.succeeded for outcome in outcomes},
        )
        return outcomes

    def _delete_identity_action(self, identity_id: str) -> CompensatingAction:
        return CompensatingAction("delete_identity", lambda: self._identities.delete_identity(identity_id))

    def _delete_profile_action(self, profile_id: str) -> CompensatingAction:
        return CompensatingAction("delete_profile", lambda: self._profiles.delete_profile(profile_id))

    def _issue_session(self, email: str, password: str, context: dict) -> Session:
        """
        Sign the new account in. A failure here leaves the verified account
        in place: retrying with the same key replays it.
        """
        try:
            return self._identities.sign_in(email, password)
        except Exception as e:
            logger.error("Session creation failed", extra={**context, "error": str(e)})
            raise InternalError(
                "User created but session failed. Please try logging in.",
                code="SESSION_CREATION_FAILED",
            ) from e

    def _transition(self, state: ProvisioningState, context: dict, **details) -> None:
        logger.info(
            "Provisioning state changed",
            extra={**context, **details, "state": state.value}
        )
