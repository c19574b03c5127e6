#!/usr/bin/env python3
"""
Create the profile table and its UNIQUE constraints in Postgres.

Account provisioning is only race-safe once these constraints exist, so
run this before the first deploy (it is idempotent).

Usage:
    python scripts/create_schema.py
    python scripts/create_schema.py --print   # show the SQL only

Requires:
    - .env file (or environment) with DATABASE_URL
"""

import os
import sys
from pathlib import Path

# Add src to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from src.infrastructure.postgres.client import (  # noqa: E402
    SCHEMA_SQL,
    PostgresConfig,
    PostgresConnectionPool,
)


def create_schema(dsn: str) -> bool:
    """Apply SCHEMA_SQL. Returns True on success."""
    try:
        pool = PostgresConnectionPool(PostgresConfig(dsn=dsn, max_connections=1))
    except Exception as e:
        print(f"ERROR connecting to Postgres: {e}")
        return False

    try:
        pool.create_schema()
        print("Profile schema is in place")
        return True
    except Exception as e:
        print(f"ERROR creating schema: {e}")
        return False
    finally:
        pool.close()


def main():
    import argparse

    parser = argparse.ArgumentParser(description='Create the profile schema in Postgres')
    parser.add_argument('--print', dest='print_only', action='store_true', help='Print the SQL, don\'t execute')
    parser.add_argument('--dsn', default=os.getenv('DATABASE_URL', ''), help='Postgres DSN (default: $DATABASE_URL)')
    args = parser.parse_args()

    if args.print_only:
        print(SCHEMA_SQL)
        sys.exit(0)

    if not args.dsn:
        print("ERROR: DATABASE_URL is not set")
        sys.exit(1)

    sys.exit(0 if create_schema(args.dsn) else 1)


if __name__ == '__main__':
    main()
