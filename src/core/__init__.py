"""
Core business logic for media storage and account provisioning.

This module is framework-agnostic - it doesn't import FastAPI, boto3,
psycopg2 or any infrastructure concerns. Stores are described as
Protocols here and implemented under infrastructure/, so the gateway and
the provisioning coordinator can be tested against in-memory fakes.
"""
