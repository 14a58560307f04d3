#!/usr/bin/env python3
"""
AuthGate operator CLI -- drive the auth core against the configured store/cache.

Usage:
  python main.py register "Ada Lovelace" ada@example.com
  python main.py login ada@example.com
  python main.py login ada@example.com --mfa-code 123456
  python main.py enroll-mfa ada@example.com

Passwords are always read with getpass, never from argv.

Environment variables: see core/config.py (SECRET_KEY, DATABASE_URL,
REDIS_URL, SMTP_HOST, ...). Set DEBUG=true for a throwaway SECRET_KEY.
"""

import argparse
import getpass
import logging
import sys

from auth.errors import AuthError, RateLimitExceeded
from auth.factory import Components, build_components
from auth.service import normalize_email
from core.config import get_settings


def _cmd_register(components: Components, args: argparse.Namespace) -> int:
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Repeat password: "):
        print("  [!] Passwords do not match.")
        return 2
    user = components.service.register(args.name, args.email, password, ip=args.ip)
    # Deliver the queued notifications before the process exits.
    components.dispatcher.run_pending()
    print(f"  Registered user #{user.id} <{user.email}>")
    return 0


def _cmd_login(components: Components, args: argparse.Namespace) -> int:
    password = getpass.getpass("Password: ")
    token = components.service.authenticate(args.email, password, args.mfa_code, ip=args.ip)
    print(f"  {token.token_type} {token.access_token}")
    print(f"  expires in {token.expires_in}s")
    return 0


def _cmd_enroll_mfa(components: Components, args: argparse.Namespace) -> int:
    user = components.store.find_by_email(normalize_email(args.email))
    if user is None:
        print(f"  [!] No user with email {args.email!r}.")
        return 1
    enrollment = components.service.enroll_mfa(user.id)
    print(f"  MFA enabled for user #{user.id}")
    print(f"  Secret: {enrollment.secret}")
    print(f"  URI:    {enrollment.provisioning_uri}")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="AuthGate operator CLI")
    parser.add_argument("--ip", default="127.0.0.1", help="Client IP used for rate limiting (default: 127.0.0.1)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level")
    sub = parser.add_subparsers(dest="command", required=True)

    p_register = sub.add_parser("register", help="Create a user account")
    p_register.add_argument("name")
    p_register.add_argument("email")
    p_register.set_defaults(func=_cmd_register)

    p_login = sub.add_parser("login", help="Authenticate and print a bearer token")
    p_login.add_argument("email")
    p_login.add_argument("--mfa-code", default=None)
    p_login.set_defaults(func=_cmd_login)

    p_enroll = sub.add_parser("enroll-mfa", help="Enable TOTP for a user and print the secret")
    p_enroll.add_argument("email")
    p_enroll.set_defaults(func=_cmd_enroll_mfa)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    components = build_components(get_settings())
    try:
        return args.func(components, args)
    except RateLimitExceeded as exc:
        print(f"  [!] {exc.message} (retry after {exc.retry_after}s)")
        return 3
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        components.close()


if __name__ == "__main__":
    sys.exit(main())
