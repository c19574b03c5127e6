"""Postgres repositories - one per aggregate."""

from .profiles import InMemoryProfileRepository, PostgresProfileRepository, create_profile_store

__all__ = ["InMemoryProfileRepository", "PostgresProfileRepository", "create_profile_store"]
