#!/usr/bin/env python3
"""
Gatehouse -- Session-based authentication service.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080 --reload
  python main.py purge-sessions
  python main.py unlock user@example.com
  python main.py check-password

Environment variables (see core/config.py for the full list):
  SECRET_KEY     Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL   SQLAlchemy URL of the user/session store (default: sqlite:///gatehouse.db).
  DEBUG          true for local development.
"""

import argparse
import getpass
import logging
import sys
from datetime import timedelta

from core.config import get_settings

logger = logging.getLogger("gatehouse.cli")


def _open_database():
    # Imported lazily so `serve` and `--help` never open a second engine.
    from auth.db import Database

    settings = get_settings()
    return Database(settings.database_url, timeout=settings.store_timeout_seconds)


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def cmd_purge_sessions(args: argparse.Namespace) -> int:
    """Delete expired session rows once and report how many were removed."""
    from auth.sessions import SessionManager

    db = _open_database()
    try:
        removed = SessionManager(db).purge_expired()
    finally:
        db.close()
    print(f"Purged {removed} expired session(s).")
    return 0


def cmd_unlock(args: argparse.Namespace) -> int:
    """Clear the failed-attempt counter and lockout of one account."""
    from auth.credentials import CredentialStore

    settings = get_settings()
    db = _open_database()
    try:
        store = CredentialStore(
            db,
            max_attempts=settings.max_login_attempts,
            lockout=timedelta(seconds=settings.lockout_seconds),
        )
        unlocked = store.unlock(args.email)
    finally:
        db.close()
    if not unlocked:
        print(f"  [!] No account found for '{args.email}'.")
        return 1
    logger.info("Account unlocked by operator: %s", args.email)
    print(f"Unlocked {args.email}.")
    return 0


def cmd_check_password(args: argparse.Namespace) -> int:
    """Evaluate a password against the policy. Reads it without echo."""
    from auth.password_policy import MAX_SCORE, evaluate

    candidate = getpass.getpass("Password: ")
    result = evaluate(candidate)
    print(f"Accepted: {'yes' if result.accepted else 'no'}")
    print(f"Strength: {result.score}/{MAX_SCORE} ({'strong' if result.strong else 'weak'})")
    for message in result.messages:
        print(f"  [!] {message}")
    for hint in result.feedback:
        print(f"  - {hint}")
    return 0 if result.accepted else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gatehouse",
        description="Session-based authentication service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --port 8080
  python main.py purge-sessions
  python main.py unlock user@example.com
  DEBUG=true python main.py check-password
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    serve.set_defaults(func=cmd_serve)

    purge = sub.add_parser("purge-sessions", help="Delete expired sessions from the store")
    purge.set_defaults(func=cmd_purge_sessions)

    unlock = sub.add_parser("unlock", help="Clear the lockout state of an account")
    unlock.add_argument("email", help="Email address of the account")
    unlock.set_defaults(func=cmd_unlock)

    check = sub.add_parser("check-password", help="Score a password against the policy")
    check.set_defaults(func=cmd_check_password)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
