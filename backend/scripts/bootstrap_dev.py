"""
Dev bootstrap script — create an admin user and an admin API key.

Usage:
    python -m scripts.bootstrap_dev [email] [password]

This will:
  1. Create an active admin user (default: admin@dealer.local / change-me-now)
  2. Generate an API key with read, write and admin permissions
  3. Print the raw key ONCE (only its hash is stored)

The raw key is shown exactly once — copy it immediately.
"""

import asyncio
import sys

# Ensure the project root is on the path
sys.path.insert(0, ".")

from sqlalchemy import select

from aftersales.auth.api_keys import create_api_key
from aftersales.auth.hashing import hash_password
from aftersales.core.database import async_session_factory, engine
from aftersales.models.user import ROLE_ADMIN, User

DEFAULT_EMAIL = "admin@dealer.local"
DEFAULT_PASSWORD = "change-me-now"


async def main(email: str, password: str) -> None:
    async with async_session_factory() as session:
        # ── Create admin user ───────────────────────────────
        existing = (
            await session.execute(select(User).where(User.email == email))
        ).scalar_one_or_none()
        if existing is None:
            session.add(
                User(
                    email=email,
                    password_hash=hash_password(password),
                    full_name="Dev Admin",
                    role=ROLE_ADMIN,
                    is_active=True,
                )
            )
            await session.commit()
            user_note = "created"
        else:
            user_note = "already existed (password unchanged)"

        # ── Generate API key ────────────────────────────────
        api_key, raw_key = await create_api_key(
            session,
            name="Dev Admin Key",
            permissions=["read", "write", "admin"],
            created_by=email,
            notes="Created by scripts/bootstrap_dev.py",
        )

    # ── Print results ───────────────────────────────────────
    print()
    print("=" * 60)
    print("  Dev Bootstrap Complete")
    print("=" * 60)
    print()
    print(f"  Admin user: {email} ({user_note})")
    print()
    print(f"  API Key:    {raw_key}")
    print(f"  Key ID:     {api_key.id}")
    print()
    print("  ⚠  Copy this key now — it will NEVER be shown again.")
    print("=" * 60)
    print()

    await engine.dispose()


if __name__ == "__main__":
    args = sys.argv[1:]
    asyncio.run(
        main(
            args[0] if len(args) > 0 else DEFAULT_EMAIL,
            args[1] if len(args) > 1 else DEFAULT_PASSWORD,
        )
    )
