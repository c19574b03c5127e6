"""
FastAPI dependency injection.

Dependencies provide instances of services, clients, and configuration
to route handlers. Using dependency injection means:
- Routes don't instantiate their own dependencies (easier to test)
- Dependencies can be swapped for in-memory fakes in tests
- Resource lifecycle (pools, HTTP clients) is managed in one place

Services are built once at startup (see main.lifespan) and read from
app.state here; nothing is created per request.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..config.settings import Settings
from ..core.errors import AuthError
from .services import Services

logger = logging.getLogger(__name__)

# Bearer token security scheme (access tokens issued by the identity service)
bearer_scheme = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

def get_services(request: Request) -> Services:
    """Provide the service container built at startup."""
    return request.app.state.services


ServicesDep = Annotated[Services, Depends(get_services)]


def get_app_settings(request: Request) -> Settings:
    """Provide the settings the application was created with."""
    return request.app.state.settings



# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

def get_optional_user(
    services: ServicesDep,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> Optional[str]:
    """
    Resolve the bearer token to a user id, if one was sent.

    An invalid or expired token is treated as anonymous: public content
    stays readable, and private content is refused by the ACL anyway.
    """
    if credentials is None:
        return None

    user_id = services.identities.resolve_token(credentials.credentials)
    if user_id is None:
        logger.info("Ignoring invalid bearer token")
    return user_id


def get_current_user(
    user_id: Annotated[Optional[str], Depends(get_optional_user)],
) -> str:
    """Require an authenticated user. Raises 401 otherwise."""
    if user_id is None:
        raise AuthError("Authentication required")
    return user_id


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
AuthenticatedUser = Annotated[str, Depends(get_current_user)]
OptionalUser = Annotated[Optional[str], Depends(get_optional_user)]
SettingsDep = Annotated[Settings, Depends(get_app_settings)]
