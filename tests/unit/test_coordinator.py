"""
Unit tests for account provisioning.

The coordinator must leave either a complete identity+profile pair or
nothing at all, and a retried request must return the original account.
Failure injection is done by subclassing the in-memory backends.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import date

import pytest

from src.core.accounts import (
    CoordinatorConfig,
    IdempotencyLedger,
    ProvisioningCoordinator,
    ProvisioningState,
)
from src.core.accounts.ledger import KeyAlreadyClaimed
from src.core.accounts.models import ProfileEntry
from src.core.accounts.stores import DuplicateProfileError
from src.core.accounts.validation import parse_birthday
from src.core.errors import AuthError, ConflictError, ConsistencyError, InternalError, StorageError, ValidationError
from src.infrastructure.identity.client import MockIdentityClient
from src.infrastructure.postgres.repositories.profiles import InMemoryProfileRepository

TODAY = date(2026, 6, 15)


def build(identities, profiles) -> ProvisioningCoordinator:
    return ProvisioningCoordinator(
        identities,
        profiles,
        ledger=IdempotencyLedger(profiles),
        config=CoordinatorConfig(race_wait_attempts=50, race_wait_interval_seconds=0.01),
        today=lambda: TODAY,
    )


# ---------------------------------------------------------------------------
# Happy path and idempotency
# ---------------------------------------------------------------------------

class TestProvision:

    def test_creates_identity_and_profile(self, coordinator, identities, profiles, make_request):
        result = coordinator.provision(make_request())

        assert result.state == ProvisioningState.VERIFIED
        assert not result.idempotent
        assert result.session.user_id == result.account_id

        identity = identities.get_identity(result.account_id)
        profile = profiles.get_profile(result.account_id)
        assert identity.email == "maria@example.com"
        assert profile.email == "maria@example.com"
        assert profile.idempotency_key == "key-1"
        assert profile.is_active and not profile.is_verified
        assert profile.social_media_links is None

    def test_performer_profile_keeps_types_and_handles(self, coordinator, profiles, make_request):
        request = make_request(
            role="street_performer",
            performance_types=["music", "dance"],
            socials={"instagram": " @maria ", "x": ""},
        )

        result = coordinator.provision(request)

        profile = profiles.get_profile(result.account_id)
        assert profile.performance_types == ["music", "dance"]
        assert profile.social_media_links == {"instagram": "@maria"}

    def test_same_key_twice_returns_same_account(self, coordinator, identities, profiles, make_request):
        first = coordinator.provision(make_request())
        second = coordinator.provision(make_request())

        assert second.account_id == first.account_id
        assert second.idempotent
        assert second.state == ProvisioningState.IDEMPOTENT_HIT
        assert len(identities) == 1
        assert len(profiles) == 1

    def test_replay_with_wrong_password_is_refused(self, coordinator, identities, profiles, make_request):
        coordinator.provision(make_request())

        with pytest.raises(AuthError):
            coordinator.provision(make_request(password="different-pass"))
        assert len(identities) == 1
        assert len(profiles) == 1


# ---------------------------------------------------------------------------
# Side-effect-free rejections
# ---------------------------------------------------------------------------

class TestRejections:

    def test_invalid_request_creates_nothing(self, coordinator, identities, profiles, make_request):
        with pytest.raises(ValidationError) as exc_info:
            coordinator.provision(make_request(email="bad", tos_accepted=False))

        assert {e.code for e in exc_info.value.errors} == {"INVALID_EMAIL", "TOS_NOT_ACCEPTED"}
        assert exc_info.value.status_code == 422
        assert len(identities) == 0
        assert len(profiles) == 0

    def test_username_taken_case_insensitively(self, coordinator, identities, make_request):
        coordinator.provision(make_request())

        with pytest.raises(ConflictError) as exc_info:
            coordinator.provision(make_request(
                idempotency_key="key-2", email="other@example.com", username="MARIA_SINGS",
            ))

        assert exc_info.value.code == "USERNAME_EXISTS"
        assert exc_info.value.errors[0].field == "username"
        assert len(identities) == 1

    def test_email_taken(self, coordinator, identities, make_request):
        coordinator.provision(make_request())

        with pytest.raises(ConflictError) as exc_info:
            coordinator.provision(make_request(idempotency_key="key-2", username="someone_else"))

        assert exc_info.value.code == "EMAIL_EXISTS"
        assert len(identities) == 1


# ---------------------------------------------------------------------------
# Failures after side effects
# ---------------------------------------------------------------------------

class FailingCommitProfiles(InMemoryProfileRepository):
    def upsert_profile(self, profile):
        raise RuntimeError("connection reset")


class MismatchedReadProfiles(InMemoryProfileRepository):
    """Commits fine but reads back a row with someone else's key."""

    def __init__(self, fail_delete=False):
        super().__init__()
        self.fail_delete = fail_delete

    def get_profile(self, profile_id):
        row = super().get_profile(profile_id)
        return replace(row, idempotency_key="somebody-elses-key") if row else None

    def delete_profile(self, profile_id):
        if self.fail_delete:
            raise RuntimeError("database unavailable")
        return super().delete_profile(profile_id)


class FlakySessionIdentities(MockIdentityClient):
    """sign_in fails the first `failures` times."""

    def __init__(self, failures=1):
        super().__init__()
        self.failures = failures

    def sign_in(self, email, password):
        if self.failures:
            self.failures -= 1
            raise RuntimeError("auth service timeout")
        return super().sign_in(email, password)


class TestRollback:

    def test_commit_failure_removes_identity(self, identities, make_request):
        coordinator = build(identities, FailingCommitProfiles())

        with pytest.raises(StorageError) as exc_info:
            coordinator.provision(make_request())

        assert exc_info.value.code == "PROFILE_CREATION_FAILED"
        assert [(c.name, c.succeeded) for c in exc_info.value.compensations] == [("delete_identity", True)]
        assert len(identities) == 0

    def test_verification_failure_removes_both(self, identities, make_request):
        profiles = MismatchedReadProfiles()
        coordinator = build(identities, profiles)

        with pytest.raises(ConsistencyError) as exc_info:
            coordinator.provision(make_request())

        assert exc_info.value.status_code == 500
        assert [c.name for c in exc_info.value.compensations] == ["delete_profile", "delete_identity"]
        assert len(identities) == 0
        assert len(profiles) == 0

    def test_rollback_continues_past_a_failed_step(self, identities, make_request):
        profiles = MismatchedReadProfiles(fail_delete=True)
        coordinator = build(identities, profiles)

        with pytest.raises(ConsistencyError) as exc_info:
            coordinator.provision(make_request())

        outcomes = {c.name: c.succeeded for c in exc_info.value.compensations}
        assert outcomes == {"delete_profile": False, "delete_identity": True}
        assert len(identities) == 0

    def test_session_failure_keeps_account_and_retry_replays_it(self, profiles, make_request):
        identities = FlakySessionIdentities(failures=1)
        coordinator = build(identities, profiles)

        with pytest.raises(InternalError) as exc_info:
            coordinator.provision(make_request())
        assert exc_info.value.code == "SESSION_CREATION_FAILED"
        assert len(identities) == 1
        assert len(profiles) == 1

        result = coordinator.provision(make_request())
        assert result.idempotent
        assert len(identities) == 1


# ---------------------------------------------------------------------------
# Races
# ---------------------------------------------------------------------------

class StalePrecheckProfiles(InMemoryProfileRepository):
    """The first uniqueness pre-check misses a row committed right after it."""

    def __init__(self):
        super().__init__()
        self.stale_checks = 1

    def find_conflicts(self, username, email, exclude_key=None):
        if self.stale_checks:
            self.stale_checks -= 1
            return []
        return super().find_conflicts(username, email, exclude_key)


class StaleLookupProfiles(InMemoryProfileRepository):
    """The next `stale_lookups` key lookups miss a row that is already committed."""

    def __init__(self):
        super().__init__()
        self.stale_lookups = 0

    def find_by_idempotency_key(self, key):
        if self.stale_lookups:
            self.stale_lookups -= 1
            return None
        return super().find_by_idempotency_key(key)


class TestRaces:

    def test_concurrent_same_key_yields_one_account(self, coordinator, identities, profiles, make_request):
        barrier = threading.Barrier(8)

        def attempt():
            barrier.wait()
            return coordinator.provision(make_request())

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: attempt(), range(8)))

        assert len({r.account_id for r in results}) == 1
        assert sum(not r.idempotent for r in results) == 1
        assert len(identities) == 1
        assert len(profiles) == 1

    def test_concurrent_same_username_one_winner(self, coordinator, identities, profiles, make_request):
        barrier = threading.Barrier(6)

        def attempt(n):
            barrier.wait()
            try:
                return coordinator.provision(make_request(
                    idempotency_key=f"key-{n}", email=f"user{n}@example.com",
                ))
            except ConflictError as e:
                return e

        with ThreadPoolExecutor(max_workers=6) as pool:
            outcomes = list(pool.map(attempt, range(6)))

        winners = [o for o in outcomes if not isinstance(o, ConflictError)]
        losers = [o for o in outcomes if isinstance(o, ConflictError)]
        assert len(winners) == 1
        assert {e.code for e in losers} == {"USERNAME_EXISTS"}
        assert len(identities) == 1
        assert len(profiles) == 1

    def test_commit_race_on_username_compensates_identity(self, identities, make_request):
        profiles = StalePrecheckProfiles()
        coordinator = build(identities, profiles)
        profiles.upsert_profile(replace(
            _profile_for(make_request(idempotency_key="key-0", email="first@example.com")),
            id="existing-account",
        ))

        with pytest.raises(ConflictError) as exc_info:
            coordinator.provision(make_request())

        assert exc_info.value.code == "USERNAME_EXISTS"
        assert len(identities) == 0
        assert len(profiles) == 1

    def test_same_key_commit_race_replays_the_winner(self, identities, make_request):
        profiles = StaleLookupProfiles()
        coordinator = build(identities, profiles)
        first = coordinator.provision(make_request(email="first@example.com"))
        profiles.stale_lookups = 1

        second = coordinator.provision(make_request(email="second@example.com"))

        assert second.account_id == first.account_id
        assert second.idempotent
        assert len(identities) == 1
        assert len(profiles) == 1

    def test_in_flight_same_key_identity_is_key_in_use(self, identities, profiles, make_request):
        coordinator = ProvisioningCoordinator(
            identities,
            profiles,
            ledger=IdempotencyLedger(profiles),
            config=CoordinatorConfig(race_wait_attempts=2, race_wait_interval_seconds=0.01),
            today=lambda: TODAY,
        )
        identities.create_identity("maria@example.com", "s3cretpass", {})

        with pytest.raises(ConflictError) as exc_info:
            coordinator.provision(make_request())

        assert exc_info.value.code == "IDEMPOTENCY_KEY_IN_USE"
        assert exc_info.value.errors[0].field == "idempotency_key"
        assert len(identities) == 1
        assert len(profiles) == 0


def _profile_for(request):
    return ProfileEntry.from_request("placeholder", request, parse_birthday(request.birthday))


class TestLedger:

    def test_commit_maps_key_violation(self, profiles, make_request):
        ledger = IdempotencyLedger(profiles)
        ledger.commit_with_profile(replace(_profile_for(make_request()), id="a"))

        with pytest.raises(KeyAlreadyClaimed):
            ledger.commit_with_profile(replace(
                _profile_for(make_request(email="b@example.com", username="other_user")), id="b",
            ))

    def test_other_violations_propagate(self, profiles, make_request):
        ledger = IdempotencyLedger(profiles)
        ledger.commit_with_profile(replace(_profile_for(make_request()), id="a"))

        with pytest.raises(DuplicateProfileError) as exc_info:
            ledger.commit_with_profile(replace(
                _profile_for(make_request(idempotency_key="key-2", username="other_user")), id="b",
            ))

        assert exc_info.value.field == "email"

    def test_await_entry_gives_up_early(self, profiles):
        sleeps = []
        ledger = IdempotencyLedger(profiles, sleep=sleeps.append)

        assert ledger.await_entry("missing", attempts=10, interval_seconds=0.5, give_up=lambda: True) is None
        assert sleeps == []

    def test_await_entry_polls_until_exhausted(self, profiles):
        sleeps = []
        ledger = IdempotencyLedger(profiles, sleep=sleeps.append)

        assert ledger.await_entry("missing", attempts=3, interval_seconds=0.5) is None
        assert sleeps == [0.5, 0.5]
