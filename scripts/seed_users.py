#!/usr/bin/env python3
"""Seed the demo accounts used for local development.

Usage:
    # Postgres from DATABASE_URL (or .env):
    python scripts/seed_users.py

    # Replace existing demo accounts:
    python scripts/seed_users.py --reset

    # Show what would happen:
    python scripts/seed_users.py --dry-run

Environment Variables:
    DATABASE_URL: PostgreSQL connection string
    USE_MEMORY_STORE: seed an in-memory store instead (useful for smoke checks)
    SEED_PASSWORD: password for every demo account (default: 1234567890x1)
"""
from __future__ import annotations

import argparse
import os
import sys
from typing import Iterable, List, Tuple

DEFAULT_PASSWORD = "1234567890x1"

DEMO_USERS: Tuple[Tuple[str, str], ...] = (
    ("Admin", "demo@demo.com"),
    ("Moderator", "mod@demo.com"),
)


def seed_demo_users(
    store,
    passwords,
    password: str = DEFAULT_PASSWORD,
    *,
    users: Iterable[Tuple[str, str]] = DEMO_USERS,
    reset: bool = False,
    dry_run: bool = False,
) -> List[dict]:
    """Create each demo user that is not already present.

    Returns one result dict per user with ``status`` set to ``created``,
    ``exists``, ``replaced`` or ``dry_run``.
    """
    results: List[dict] = []
    digest = passwords.hash(password)
    for name, email in users:
        existing = store.get_user_by_email(email)
        if existing and not reset:
            results.append({"email": email, "user_id": existing.id, "status": "exists"})
            continue
        if dry_run:
            results.append({"email": email, "user_id": None, "status": "dry_run"})
            continue
        status = "created"
        if existing:
            store.delete_user(existing.id)
            status = "replaced"
        user = store.create_user(name, email, digest)
        results.append({"email": email, "user_id": user.id, "status": status})
    return results


def _build_store():
    from userhub.config import get_settings
    from userhub.storage.memory import MemoryStore
    from userhub.storage.postgres import PostgresStore

    settings = get_settings()
    if settings.use_memory_store:
        return MemoryStore()
    return PostgresStore(settings.database_url)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Seed demo users for userhub",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("SEED_PASSWORD", DEFAULT_PASSWORD),
        help="Password for every demo account (or set SEED_PASSWORD)",
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete and recreate demo accounts that already exist",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args()

    from userhub.logging import get_logger
    from userhub.service.passwords import PasswordService

    logger = get_logger("userhub.seed")
    try:
        store = _build_store()
        results = seed_demo_users(
            store,
            PasswordService(),
            args.password,
            reset=args.reset,
            dry_run=args.dry_run,
        )
    except Exception as exc:
        logger.error("seed_failed", error_type=type(exc).__name__, error=str(exc))
        print(f"Error: {exc}")
        sys.exit(1)

    for result in results:
        print(f"  {result['status']:>8}  {result['email']} (id: {result['user_id']})")
    print("Seeding completed.")


if __name__ == "__main__":
    main()
