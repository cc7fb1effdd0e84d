#!/usr/bin/env python3
"""
Checks the LDAP configuration by looking up an account in the directory.

Uses the same settings (environment / .env) as the API.

Usage:
    python ldap_check.py --username alice
    python ldap_check.py --email alice@example.com
"""
import argparse
import logging
import sys

from dirauth.config import settings
from dirauth.services.directory import DirectoryStatus, Ldap3DirectoryClient
from dirauth.services.ldap_auth import LdapAuthenticator


def main():
    parser = argparse.ArgumentParser(
        description="Looks up an account in the configured LDAP directory"
    )
    parser.add_argument("--username", "-u", type=str, default=None, help="Username to look up")
    parser.add_argument("--email", "-e", type=str, default=None, help="Email address to look up")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args()

    if not args.username and not args.email:
        parser.error("--username or --email is required")

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    print(f"Server: {settings.ldap_server}:{settings.ldap_port} (bind type: {settings.ldap_bind_type})")
    print(f"Base: {settings.ldap_account_base}")

    result = LdapAuthenticator(Ldap3DirectoryClient()).lookup(args.username, args.email)
    if result.status is DirectoryStatus.ERROR:
        print("LDAP server unavailable, see log above")
        return 2
    if not result.found:
        print("Not found")
        return 1

    print(f"  username: {result.user.username}")
    print(f"  name:     {result.user.name}")
    print(f"  email:    {result.user.email}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
