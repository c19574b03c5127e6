"""
Account provisioning logic.

Validation, the idempotency ledger, compensating rollback and the
coordinator that ties them into one atomic-looking operation.
"""

from .coordinator import CoordinatorConfig, ProvisioningCoordinator
from .ledger import IdempotencyLedger, LedgerEntry
from .models import (
    Borough,
    IdentityEntry,
    ProfileEntry,
    ProvisioningRequest,
    ProvisioningResult,
    ProvisioningState,
    Role,
    Session,
)
from .stores import DuplicateProfileError, IdentityConflictError, IdentityStore, ProfileStore
from .validation import validate_request

__all__ = [
    "Borough",
    "CoordinatorConfig",
    "DuplicateProfileError",
    "IdempotencyLedger",
    "IdentityConflictError",
    "IdentityEntry",
    "IdentityStore",
    "LedgerEntry",
    "ProfileEntry",
    "ProfileStore",
    "ProvisioningCoordinator",
    "ProvisioningRequest",
    "ProvisioningResult",
    "ProvisioningState",
    "Role",
    "Session",
    "validate_request",
]
