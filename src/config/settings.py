"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables with sensible defaults.
Using Pydantic's BaseSettings means we get:
- Type validation at startup (fail fast if config is wrong)
- Documentation of what's required vs optional
- Easy testing with different configurations

Mock modes enable local development without external services.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like public_object_prefixes), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "Busker API"
    api_version: str = "v1"

    # R2/S3 Storage Configuration
    r2_account_id: str = Field(
        default="",
        description="Cloudflare account ID for R2"
    )
    r2_access_key_id: str = Field(
        default="",
        description="R2 access key ID"
    )
    r2_secret_access_key: str = Field(
        default="",
        description="R2 secret access key"
    )
    r2_bucket_name: str = Field(
        default="busker-media",
        description="R2 bucket holding uploaded videos and thumbnails"
    )
    r2_endpoint_url: Optional[str] = Field(
        default=None,
        description="R2 endpoint URL. Auto-constructed from account_id if not provided."
    )
    r2_mock_mode: bool = Field(
        default=False,
        description="Use in-memory mock instead of real R2. Enables local dev without object storage."
    )

    # Object layout and delivery
    private_object_prefix: str = Field(
        default="private",
        description="Key prefix under which uploads land (<prefix>/uploads/<id>)"
    )
    public_object_prefixes: str = Field(
        default="public",
        description="Comma-separated key prefixes searched, in order, for /public-objects/ paths"
    )
    upload_url_ttl_seconds: int = Field(
        default=900,
        description="Lifetime of signed upload URLs. Short enough that a leaked URL is useless quickly."
    )
    public_cache_ttl_seconds: int = Field(
        default=86400,
        description="max-age for public objects. Object ids are never reused, so long caching is safe."
    )
    private_cache_ttl_seconds: int = Field(
        default=3600,
        description="max-age for private objects (private caches only)"
    )
    stream_chunk_size: int = Field(
        default=64 * 1024,
        description="Bytes per chunk when streaming objects. Bounds per-request memory."
    )

    # Postgres (profile store)
    database_url: str = Field(
        default="",
        description="Postgres DSN for the profile store"
    )
    database_pool_size: int = Field(
        default=10,
        description="Maximum pooled Postgres connections"
    )
    postgres_mock_mode: bool = Field(
        default=False,
        description="Use in-memory profile store instead of Postgres. Enables local dev without DB."
    )

    # Supabase Auth (identity store)
    supabase_url: str = Field(
        default="",
        description="Supabase project URL, e.g. https://<ref>.supabase.co"
    )
    supabase_service_role_key: str = Field(
        default="",
        description="Service-role key used for admin user management. Never expose to clients."
    )
    supabase_anon_key: str = Field(
        default="",
        description="Anon key used for password sign-in and token lookup"
    )
    supabase_mock_mode: bool = Field(
        default=False,
        description="Use in-memory identity service instead of Supabase Auth"
    )

    # Account provisioning
    idempotency_wait_attempts: int = Field(
        default=20,
        description="How many times a request that lost a race polls for the winner's account"
    )
    idempotency_wait_interval_seconds: float = Field(
        default=0.1,
        description="Delay between those polls"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:8081",
        description="Comma-separated list of allowed CORS origins. Use * for development only."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def public_object_prefixes_list(self) -> list[str]:
        """Parse comma-separated public prefixes into a list, preserving order."""
        return [prefix.strip() for prefix in self.public_object_prefixes.split(",") if prefix.strip()]

    @property
    def r2_endpoint(self) -> str:
        """
        Construct R2 endpoint URL from account ID.

        R2 endpoints follow the pattern: https://{account_id}.r2.cloudflarestorage.com
        This is S3-compatible but uses Cloudflare's network.
        """
        if self.r2_endpoint_url:
            return self.r2_endpoint_url
        return f"https://{self.r2_account_id}.r2.cloudflarestorage.com"

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode settings.

        Returns list of missing required fields.
        This is separate from Pydantic validation because requirements
        depend on whether we're in mock mode.
        """
        missing = []

        # R2 only required if not in mock mode
        if not self.r2_mock_mode:
            if not self.r2_account_id and not self.r2_endpoint_url:
                missing.append("R2_ACCOUNT_ID or R2_ENDPOINT_URL")
            if not self.r2_access_key_id:
                missing.append("R2_ACCESS_KEY_ID")
            if not self.r2_secret_access_key:
                missing.append("R2_SECRET_ACCESS_KEY")

        if not self.postgres_mock_mode and not self.database_url:
            missing.append("DATABASE_URL")

        if not self.supabase_mock_mode:
            if not self.supabase_url:
                missing.append("SUPABASE_URL")
            if not self.supabase_service_role_key:
                missing.append("SUPABASE_SERVICE_ROLE_KEY")
            if not self.supabase_anon_key:
                missing.append("SUPABASE_ANON_KEY")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache means we only load settings once per process.
    This is safe because settings don't change during runtime.
    For tests, you can call get_settings.cache_clear() to reset.
    """
    return Settings()
