#!/usr/bin/env python3
"""
WanderLanka auth service -- account administration.

Operates directly on the credential store configured by DATABASE_URL; the
API server does not need to be running.

Usage:
  python manage.py create-user nimal nimal@example.com traveller
  python manage.py create-user kasun kasun@example.com guide --password secret123
  python manage.py deactivate nimal
  python manage.py activate nimal@example.com
  python manage.py revoke-sessions nimal

Exit status is 0 on success and 1 on failure; failures are printed to stderr.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import ROLES, User
from auth.passwords import hash_password
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("wanderlanka.manage")

_PASSWORD_MIN_LEN = 6


def _fail(message: str) -> int:
    print(f"  [!] {message}", file=sys.stderr)
    return 1


def _resolve(store: UserStore, identifier: str) -> Optional[User]:
    return store.get_by_identifier(identifier.strip())


def cmd_create_user(store: UserStore, args: argparse.Namespace, bcrypt_rounds: int) -> int:
    if args.role not in ROLES:
        return _fail(f"Role must be one of: {', '.join(ROLES)}")
    if store.exists(args.username, args.email):
        return _fail("A user with that username or email already exists.")

    password = args.password
    if password is None:
        password = getpass.getpass("Password: ")
        if password != getpass.getpass("Repeat password: "):
            return _fail("Passwords do not match.")
    if len(password) < _PASSWORD_MIN_LEN:
        return _fail(f"Password must be at least {_PASSWORD_MIN_LEN} characters.")

    user = User(
        username=args.username.strip(),
        email=args.email,
        role=args.role,
        hashed_password=hash_password(password, rounds=bcrypt_rounds),
    )
    try:
        user_id = store.create_user(user)
    except IntegrityError:
        return _fail("A user with that username or email already exists.")
    print(f"  Created {args.role} '{user.username}' ({user_id})")
    return 0


def cmd_set_active(store: UserStore, args: argparse.Namespace, active: bool) -> int:
    user = _resolve(store, args.identifier)
    if user is None:
        return _fail(f"No user matches '{args.identifier}'.")
    store.set_active(user.id, active)
    print(f"  {'Activated' if active else 'Deactivated'} '{user.username}'")
    return 0


def cmd_revoke_sessions(store: UserStore, args: argparse.Namespace) -> int:
    user = _resolve(store, args.identifier)
    if user is None:
        return _fail(f"No user matches '{args.identifier}'.")
    revoked = len(user.refresh_tokens)
    store.clear_refresh_tokens(user.id)
    print(f"  Revoked {revoked} session(s) for '{user.username}'")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wanderlanka-auth",
        description="Administer WanderLanka user accounts.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python manage.py create-user nimal nimal@example.com traveller
  python manage.py deactivate nimal
  DATABASE_URL=sqlite:///prod.db python manage.py revoke-sessions nimal
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy URL of the credential store (default: DATABASE_URL setting)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Register a new account")
    create.add_argument("username")
    create.add_argument("email")
    create.add_argument("role", metavar="ROLE", help=f"One of: {', '.join(ROLES)}")
    create.add_argument(
        "--password",
        default=None,
        help="Password for the new account (prompted for when omitted)",
    )

    for name, text in (
        ("deactivate", "Block login and token refresh for an account"),
        ("activate", "Re-enable a deactivated account"),
        ("revoke-sessions", "Drop every stored refresh token of an account"),
    ):
        cmd = sub.add_parser(name, help=text)
        cmd.add_argument("identifier", metavar="IDENTIFIER", help="Username or email")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    store = UserStore(
        args.database_url or settings.database_url,
        timeout=settings.store_timeout_seconds,
        token_capacity=settings.refresh_token_cap,
    )
    try:
        if args.command == "create-user":
            return cmd_create_user(store, args, settings.bcrypt_rounds)
        if args.command == "deactivate":
            return cmd_set_active(store, args, active=False)
        if args.command == "activate":
            return cmd_set_active(store, args, active=True)
        return cmd_revoke_sessions(store, args)
    except SQLAlchemyError as exc:
        logger.debug("Store failure", exc_info=True)
        return _fail(f"Credential store error: {exc.__class__.__name__}")
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
