"""
Shared fixtures.

Everything runs against the in-memory backends: no object storage, no
Postgres, no identity service.
"""

from datetime import date

import pytest
from fastapi.testclient import TestClient

from src.api.services import build_services
from src.config.settings import Settings
from src.core.accounts import CoordinatorConfig, IdempotencyLedger, ProvisioningCoordinator, ProvisioningRequest
from src.core.storage import AclPolicyStore, GatewayConfig, ObjectAccessGateway, UploadURLIssuer
from src.infrastructure.identity.client import MockIdentityClient
from src.infrastructure.postgres.repositories.profiles import InMemoryProfileRepository
from src.infrastructure.storage.client import MockStorageClient
from src.main import create_app

BUCKET = "busker-test"
TODAY = date(2026, 6, 15)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

@pytest.fixture
def storage() -> MockStorageClient:
    return MockStorageClient()


@pytest.fixture
def gateway_config() -> GatewayConfig:
    return GatewayConfig(
        bucket=BUCKET,
        private_prefix="private",
        public_prefixes=["public", "assets"],
        chunk_size=4,
    )


@pytest.fixture
def acl_store(storage) -> AclPolicyStore:
    return AclPolicyStore(storage)


@pytest.fixture
def gateway(storage, acl_store, gateway_config) -> ObjectAccessGateway:
    return ObjectAccessGateway(storage, acl_store, gateway_config)


@pytest.fixture
def issuer(storage, gateway) -> UploadURLIssuer:
    return UploadURLIssuer(storage, gateway)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

@pytest.fixture
def identities() -> MockIdentityClient:
    return MockIdentityClient()


@pytest.fixture
def profiles() -> InMemoryProfileRepository:
    return InMemoryProfileRepository()


@pytest.fixture
def coordinator(identities, profiles) -> ProvisioningCoordinator:
    return ProvisioningCoordinator(
        identities,
        profiles,
        ledger=IdempotencyLedger(profiles),
        config=CoordinatorConfig(race_wait_attempts=50, race_wait_interval_seconds=0.01),
        today=lambda: TODAY,
    )


@pytest.fixture
def make_request():
    """Factory for a valid new_yorker registration; override any field."""
    def factory(**overrides) -> ProvisioningRequest:
        fields = dict(
            idempotency_key="key-1",
            email="Maria@Example.com",
            password="s3cretpass",
            username="maria_sings",
            full_name="Maria Lopez",
            birthday="1995-04-02",
            borough="BK",
            role="new_yorker",
            tos_accepted=True,
        )
        fields.update(overrides)
        return ProvisioningRequest(**fields)
    return factory


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        r2_mock_mode=True,
        postgres_mock_mode=True,
        supabase_mock_mode=True,
        r2_bucket_name=BUCKET,
        private_object_prefix="private",
        public_object_prefixes="public",
        stream_chunk_size=4,
        idempotency_wait_attempts=50,
        idempotency_wait_interval_seconds=0.01,
    )


@pytest.fixture
def services(settings, storage, identities, profiles):
    return build_services(settings, storage=storage, identities=identities, profiles=profiles)


@pytest.fixture
def client(settings, services) -> TestClient:
    app = create_app(settings=settings, services=services)
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def auth_headers(identities):
    """Factory: create an identity and return (user_id, Authorization headers)."""
    counter = iter(range(1000))

    def factory():
        n = next(counter)
        email = f"user{n}@example.com"
        identities.create_identity(email, "password123", {})
        session = identities.sign_in(email, "password123")
        return session.user_id, {"Authorization": f"Bearer {session.access_token}"}
    return factory
