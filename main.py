#!/usr/bin/env python3
"""
Auth² management CLI.

The HTTP API can only create accounts ranked at or below the caller, so the
first Owner has to come from somewhere: this command talks to the store
directly and creates an active account with any role.

Usage:
  python main.py create-account --email owner@example.com --username owner \\
      --first-name Ada --last-name Lovelace --phone 2065550100 --role owner
  python main.py roles

The password is read from AUTHSQUARED_PASSWORD if set, otherwise prompted for.

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the account database (default: ./authsquared.db)
  SECRET_KEY    Required unless DEBUG=true (see core/config.py)
"""

import argparse
import getpass
import os
import sys

from auth.accounts import bootstrap_account
from auth.errors import AuthError
from auth.models import ROLE_NAMES, AccountProfile, Role
from auth.store import AccountStore
from core.config import get_settings

_ROLE_CHOICES = {name.lower(): Role(value) for value, name in ROLE_NAMES.items()}
_ROLE_CHOICES.update({role.name.lower(): role for role in Role})


def _parse_role(value: str) -> Role:
    """Accept a role number (1-5) or name (owner, super_admin, superadmin, ...)."""
    if value.isdigit():
        try:
            return Role(int(value))
        except ValueError:
            pass
    elif value.lower() in _ROLE_CHOICES:
        return _ROLE_CHOICES[value.lower()]
    raise argparse.ArgumentTypeError(f"unknown role '{value}' (expected 1-5 or one of {', '.join(sorted(_ROLE_CHOICES))})")


def _read_password() -> str:
    password = os.environ.get("AUTHSQUARED_PASSWORD")
    if password:
        return password
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Repeat password: "):
        print("  [!] Passwords do not match.", file=sys.stderr)
        sys.exit(1)
    return password


def _create_account(args: argparse.Namespace) -> int:
    password = _read_password()
    if len(password) < 8 or len(password.encode("utf-8")) > 72:
        print("  [!] Password must be at least 8 characters and at most 72 bytes.", file=sys.stderr)
        return 1

    settings = get_settings()
    store = AccountStore(settings.database_url, timeout_seconds=settings.db_timeout_seconds)
    profile = AccountProfile(
        first_name=args.first_name,
        last_name=args.last_name,
        email=args.email.strip().lower(),
        username=args.username,
        phone=args.phone,
    )
    try:
        account = bootstrap_account(store, profile, password, args.role)
    except AuthError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1
    finally:
        store.close()

    print(f"  Created account #{account.id} ({account.email}) with role {ROLE_NAMES[account.role]}.")
    return 0


def _list_roles(args: argparse.Namespace) -> int:
    for value, name in ROLE_NAMES.items():
        print(f"  {int(value)}  {name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authsquared",
        description="Auth² account management.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-account", help="Create an active account with any role")
    create.add_argument("--email", required=True)
    create.add_argument("--username", required=True)
    create.add_argument("--first-name", required=True)
    create.add_argument("--last-name", required=True)
    create.add_argument("--phone", required=True)
    create.add_argument("--role", type=_parse_role, default=Role.OWNER, help="1-5 or role name (default: owner)")
    create.set_defaults(func=_create_account)

    roles = sub.add_parser("roles", help="List the role hierarchy")
    roles.set_defaults(func=_list_roles)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
