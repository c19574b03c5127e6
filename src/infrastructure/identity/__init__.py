"""
Identity service integration (Supabase Auth).

Includes mock mode for local development without credentials.
"""

from .client import IdentityConfig, MockIdentityClient, SupabaseIdentityClient, create_identity_client

__all__ = ["IdentityConfig", "MockIdentityClient", "SupabaseIdentityClient", "create_identity_client"]
