"""
Object storage integration for uploaded media.

Supports R2 (Cloudflare) and S3 (AWS) via S3-compatible API.
Includes mock mode for local development without credentials.
"""

from .client import MockStorageClient, R2StorageClient, StorageConfig, create_storage_client

__all__ = ["MockStorageClient", "R2StorageClient", "StorageConfig", "create_storage_client"]
