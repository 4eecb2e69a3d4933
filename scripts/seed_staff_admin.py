"""
Seed Staff Admin User

Creates the first admin account so staff can sign in and run bulk imports.
Run once per environment.

Usage:
    STAFF_ADMIN_EMAIL=admin@example.com STAFF_ADMIN_PASSWORD=... \\
        python scripts/seed_staff_admin.py --name "Jane Admin"

    python scripts/seed_staff_admin.py --email jury@example.com --role jury
    (prompts for the password when STAFF_ADMIN_PASSWORD is not set)
"""

import argparse
import asyncio
import getpass
import os
import sys

from admissions.core.database import async_session_maker, engine
from admissions.core.security import hash_password
from admissions.modules.users.models import UserRole
from admissions.modules.users.repository import UserRepository

MIN_PASSWORD_LENGTH = 12


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a staff user.")
    parser.add_argument("--email", default=os.getenv("STAFF_ADMIN_EMAIL"))
    parser.add_argument("--name", default=os.getenv("STAFF_ADMIN_NAME", "Administrator"))
    parser.add_argument(
        "--role",
        choices=[role.value for role in UserRole],
        default=UserRole.ADMIN.value,
    )
    return parser.parse_args()


async def seed_staff_user(email: str, password: str, name: str, role: UserRole) -> None:
    """Create the staff user if it doesn't exist."""
    async with async_session_maker() as db:
        existing_user = await UserRepository.get_by_email(db, email)

        if existing_user:
            print(f"Staff user already exists: {existing_user.email}")
            print(f"  ID: {existing_user.id}")
            print(f"  Role: {existing_user.role.value}")
            return

        user = await UserRepository.create(
            db,
            email=email.strip().lower(),
            password_hash=hash_password(password),
            name=name,
            role=role,
        )
        await db.commit()

        print("Staff user created successfully!")
        print(f"  Email: {user.email}")
        print(f"  Name: {user.name}")
        print(f"  ID: {user.id}")
        print(f"  Role: {user.role.value}")

    await engine.dispose()


def main() -> int:
    args = _parse_args()
    if not args.email:
        print("An email is required (--email or STAFF_ADMIN_EMAIL).", file=sys.stderr)
        return 1

    password = os.getenv("STAFF_ADMIN_PASSWORD") or getpass.getpass("Password: ")
    if len(password) < MIN_PASSWORD_LENGTH:
        print(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.", file=sys.stderr)
        return 1

    asyncio.run(seed_staff_user(args.email, password, args.name, UserRole(args.role)))
    return 0


if __name__ == "__main__":
    sys.exit(main())
