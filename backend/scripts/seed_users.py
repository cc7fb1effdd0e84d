#!/usr/bin/env python3
"""
Seed script: creates a local (non-directory) account in the database.

Local accounts are never shadowed by a directory account of the same name,
so this is the way to get an administrator in before LDAP is configured.

Usage:
    python seed_users.py --username admin --password secret --admin
    python seed_users.py --username svc-report --password secret --name "Reporting"
"""
import argparse
import asyncio
import sys

from dirauth.database import async_session, engine
from dirauth.models.base import Base
from dirauth.services.auth import hash_password
from dirauth.services.users import UserStore


async def create_local_user(
    username: str,
    password: str,
    name: str,
    email: str,
    is_admin: bool,
) -> bool:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        users = UserStore(session)
        if await users.get_by_username(username) is not None:
            print(f"  Already exists: {username} (skipped)")
            return False
        created = await users.create({
            "username": username,
            "name": name,
            "email": email,
            "password_hash": hash_password(password),
            "is_admin": is_admin,
            "is_ldap_user": False,
        })
        if created:
            await session.commit()
        return created


def main():
    parser = argparse.ArgumentParser(
        description="Creates a local user in the dirauth database"
    )
    parser.add_argument("--username", "-u", type=str, required=True, help="Username")
    parser.add_argument("--password", "-p", type=str, required=True, help="Password")
    parser.add_argument("--name", type=str, default="", help="Full name")
    parser.add_argument("--email", type=str, default="", help="Email address")
    parser.add_argument(
        "--admin",
        action="store_true",
        help="Grant administrator rights",
    )
    args = parser.parse_args()

    print(f"Creating local user {args.username} ...")
    created = asyncio.run(
        create_local_user(args.username, args.password, args.name, args.email, args.admin)
    )
    if created:
        print(f"Done: {args.username} created.")
    return 0 if created else 1


if __name__ == "__main__":
    sys.exit(main())
