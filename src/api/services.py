"""
Service container.

Every backend client and core component is constructed exactly once, at
application startup, and handed to routes through app.state. Nothing
downstream looks up a global: the container is passed by reference, which
makes swapping any backend for an in-memory fake a constructor argument.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..config.settings import Settings
from ..core.accounts import CoordinatorConfig, IdempotencyLedger, ProvisioningCoordinator
from ..core.accounts.stores import IdentityStore, ProfileStore
from ..core.storage import AclPolicyStore, GatewayConfig, ObjectAccessGateway, UploadURLIssuer
from ..core.storage.backend import StorageBackend
from ..infrastructure.identity.client import IdentityConfig, create_identity_client
from ..infrastructure.postgres.client import PostgresConfig
from ..infrastructure.postgres.repositories.profiles import create_profile_store
from ..infrastructure.storage.client import StorageConfig, create_storage_client

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a request handler may need, built once per process."""
    storage: StorageBackend
    identities: IdentityStore
    profiles: ProfileStore
    acl_store: AclPolicyStore
    gateway: ObjectAccessGateway
    uploads: UploadURLIssuer
    coordinator: ProvisioningCoordinator

    def close(self) -> None:
        """Release pooled connections held by the backend clients."""
        for client in (self.storage, self.identities, self.profiles):
            close = getattr(client, "close", None)
            if close is not None:
                try:
                    close()
                except Exception as e:
                    logger.warning(
                        "Error closing backend client",
                        extra={"client": type(client).__name__, "error": str(e)}
                    )


def build_services(
    settings: Settings,
    storage: Optional[StorageBackend] = None,
    identities: Optional[IdentityStore] = None,
    profiles: Optional[ProfileStore] = None,
) -> Services:
    """
    Wire the backends and core components from settings.

    Any backend passed in is used as-is (tests pass in-memory fakes);
    the others are created per their mock-mode setting.
    """
    if storage is None:
        storage = create_storage_client(
            config=None if settings.r2_mock_mode else StorageConfig(
                access_key_id=settings.r2_access_key_id,
                secret_access_key=settings.r2_secret_access_key,
                bucket_name=settings.r2_bucket_name,
                endpoint_url=settings.r2_endpoint,
            ),
            mock_mode=settings.r2_mock_mode,
        )

    if identities is None:
        identities = create_identity_client(
            config=None if settings.supabase_mock_mode else IdentityConfig(
                url=settings.supabase_url,
                service_role_key=settings.supabase_service_role_key,
                anon_key=settings.supabase_anon_key,
            ),
            mock_mode=settings.supabase_mock_mode,
        )

    if profiles is None:
        profiles = create_profile_store(
            config=None if settings.postgres_mock_mode else PostgresConfig(
                dsn=settings.database_url,
                max_connections=settings.database_pool_size,
            ),
            mock_mode=settings.postgres_mock_mode,
        )

    acl_store = AclPolicyStore(storage)
    gateway = ObjectAccessGateway(
        storage,
        acl_store,
        GatewayConfig(
            bucket=settings.r2_bucket_name,
            private_prefix=settings.private_object_prefix,
            public_prefixes=settings.public_object_prefixes_list,
            public_cache_ttl_seconds=settings.public_cache_ttl_seconds,
            private_cache_ttl_seconds=settings.private_cache_ttl_seconds,
            chunk_size=settings.stream_chunk_size,
        ),
    )
    uploads = UploadURLIssuer(storage, gateway, ttl_seconds=settings.upload_url_ttl_seconds)
    coordinator = ProvisioningCoordinator(
        identities,
        profiles,
        ledger=IdempotencyLedger(profiles),
        config=CoordinatorConfig(
            race_wait_attempts=settings.idempotency_wait_attempts,
            race_wait_interval_seconds=settings.idempotency_wait_interval_seconds,
        ),
    )

    logger.info(
        "Built service container",
        extra={
            "storage": type(storage).__name__,
            "identities": type(identities).__name__,
            "profiles": type(profiles).__name__,
        }
    )

    return Services(
        storage=storage,
        identities=identities,
        profiles=profiles,
        acl_store=acl_store,
        gateway=gateway,
        uploads=uploads,
        coordinator=coordinator,
    )
