#!/usr/bin/env python3
"""
authgate -- administrative command line.

Usage:
  python main.py create-user admin@example.com --name Admin --role admin
  python main.py set-role someone@example.com moderator
  python main.py revoke-sessions someone@example.com
  python main.py sweep-sessions

Reads the same environment (.env, DATABASE_URL, JWT_SECRET, ...) as the API.
Passwords are read with getpass, never from argv.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from auth.models import User, UserRole
from auth.module import AuthModule
from auth.passwords import MAX_PASSWORD_BYTES
from core.config import get_settings

_ROLES = [r.value for r in UserRole]


def _create_user(module: AuthModule, email: str, name: Optional[str], role: str) -> int:
    if module.user_store.find_by_email(email) is not None:
        print(f"  [!] A user with email '{email}' already exists.")
        return 1
    password = getpass.getpass("Password: ")
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        print(f"  [!] Password must be at most {MAX_PASSWORD_BYTES} bytes.")
        return 1
    if password != getpass.getpass("Repeat password: "):
        print("  [!] Passwords do not match.")
        return 1
    name = name or email.split("@")[0]
    if not name:
        print("  [!] Could not derive a name from the email; pass --name.")
        return 1
    hashed = module.auth_service.hasher.hash(password)
    created = module.user_store.create(User(name=name, email=email, password=hashed, role=UserRole(role)))
    print(f"  Created {created.role.value} '{created.email}' (id {created.id})")
    return 0


def _set_role(module: AuthModule, email: str, role: str) -> int:
    user = module.user_store.find_by_email(email)
    if user is None:
        print(f"  [!] No user with email '{email}'.")
        return 1
    module.user_store.update(user.id, role=UserRole(role))
    if role == UserRole.banned.value:
        module.auth_service.sign_out_everywhere(user.id)
    print(f"  '{email}' is now {role}")
    return 0


def _revoke_sessions(module: AuthModule, email: str) -> int:
    user = module.user_store.find_by_email(email)
    if user is None:
        print(f"  [!] No user with email '{email}'.")
        return 1
    revoked = module.session_store.invalidate_all_by_user_id(user.id)
    print(f"  Revoked {revoked} session(s) for '{email}'")
    return 0


def _sweep_sessions(module: AuthModule) -> int:
    removed = module.auth_service.sweep_expired_sessions()
    print(f"  Purged {removed} expired session(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="authgate administration: users, roles and sessions.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Create a user with a local password")
    create.add_argument("email")
    create.add_argument("--name", default=None, help="Display name (default: local part of the email)")
    create.add_argument("--role", choices=_ROLES, default=UserRole.user.value)

    set_role = sub.add_parser("set-role", help="Change a user's role")
    set_role.add_argument("email")
    set_role.add_argument("role", choices=_ROLES)

    revoke = sub.add_parser("revoke-sessions", help="Sign a user out everywhere")
    revoke.add_argument("email")

    sub.add_parser("sweep-sessions", help="Delete all expired sessions")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    )

    module = AuthModule.from_settings(get_settings())
    try:
        if args.command == "create-user":
            return _create_user(module, args.email, args.name, args.role)
        if args.command == "set-role":
            return _set_role(module, args.email, args.role)
        if args.command == "revoke-sessions":
            return _revoke_sessions(module, args.email)
        return _sweep_sessions(module)
    finally:
        module.close()


if __name__ == "__main__":
    sys.exit(main())
