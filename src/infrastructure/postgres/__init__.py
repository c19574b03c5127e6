"""
Postgres persistence for account profiles.

The profile table's UNIQUE constraints are what make account
provisioning idempotent and race-safe.
"""
