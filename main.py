#!/usr/bin/env python3
"""
Auth service -- command-line entry point.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  DEBUG=true python main.py serve --reload
  python main.py sweep
  python main.py verify a@x.com
  python main.py revoke-sessions a@x.com

Environment variables (see core/config.py for the full list):
  SECRET_KEY    Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL  SQLAlchemy URL (default: sqlite:///authservice.db).
"""

import argparse
import asyncio
import os
import sys
from typing import Optional

from api.main import configure_logging, create_app
from auth.engine import AuthEngine
from auth.errors import AuthError
from auth.passwords import PasswordHasher
from auth.store import AuthStore
from core.config import Settings, load_settings


def _run_with_engine(settings: Settings, action) -> int:
    """Open the store, run `action(engine, store)` to completion, close everything."""
    store = AuthStore(settings.database_url)
    hasher = PasswordHasher(cost=settings.bcrypt_cost, max_workers=1)
    try:
        engine = AuthEngine(store, store, hasher, settings)
        return asyncio.run(action(engine, store))
    except AuthError as e:
        print(f"  [!] {e}", file=sys.stderr)
        return 1
    finally:
        hasher.close()
        store.close()


async def _sweep(engine: AuthEngine, store: AuthStore) -> int:
    removed = await engine.purge_expired()
    print(f"  Removed {removed} expired refresh token(s).")
    return 0


def _verify(email: str):
    async def action(engine: AuthEngine, store: AuthStore) -> int:
        user = await asyncio.to_thread(store.get_by_email, email)
        if user is None:
            print(f"  [!] No user with email '{email}'.", file=sys.stderr)
            return 1
        await engine.mark_verified(user.id)
        print(f"  {email} marked verified.")
        return 0

    return action


def _revoke_sessions(email: str):
    async def action(engine: AuthEngine, store: AuthStore) -> int:
        user = await asyncio.to_thread(store.get_by_email, email)
        if user is None:
            print(f"  [!] No user with email '{email}'.", file=sys.stderr)
            return 1
        count = await engine.revoke_all_sessions(user.id)
        print(f"  Revoked {count} session(s) for {email}.")
        return 0

    return action


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="auth-service",
        description="Password login with rotating refresh tokens.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  SECRET_KEY=... python main.py serve --port 8080
  DEBUG=true python main.py serve --reload
  python main.py sweep
  python main.py verify a@x.com
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        help="Override DATABASE_URL for this run",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API under uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")

    sub.add_parser("sweep", help="Delete expired refresh tokens once and exit")

    verify = sub.add_parser("verify", help="Mark an account's email as verified")
    verify.add_argument("email")

    revoke = sub.add_parser("revoke-sessions", help="Sign an account out of every session")
    revoke.add_argument("email")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 2

    overrides = {"database_url": args.database_url} if args.database_url else {}
    settings = load_settings(**overrides)
    configure_logging(settings)

    if args.command == "serve":
        import uvicorn

        # Reload needs an import string; asgi.py reads its settings from the environment.
        if args.reload and args.database_url:
            os.environ["DATABASE_URL"] = args.database_url
        target = "asgi:app" if args.reload else create_app(settings)
        uvicorn.run(target, host=args.host, port=args.port, reload=args.reload, log_level=settings.log_level.lower())
        return 0
    if args.command == "sweep":
        return _run_with_engine(settings, _sweep)
    if args.command == "verify":
        return _run_with_engine(settings, _verify(args.email))
    return _run_with_engine(settings, _revoke_sessions(args.email))


if __name__ == "__main__":
    sys.exit(main())
