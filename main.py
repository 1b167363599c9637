#!/usr/bin/env python3
"""
Eat Fast auth service -- operator command line.

Usage:
  python main.py serve [--host 127.0.0.1] [--port 8000] [--reload]
  python main.py seed
  python main.py create-admin EMAIL

Configuration comes from the environment / .env file (see core/config.py).
create-admin prompts for the password unless ADMIN_PASSWORD is set.
"""

import argparse
import getpass
import logging
import sys

from auth.models import RoleName
from auth.seed import seed_admin, seed_roles
from auth.store import AccountStore
from core.config import get_settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _cmd_seed(args: argparse.Namespace) -> int:
    store = AccountStore(get_settings().database_url)
    try:
        created = seed_roles(store)
    finally:
        store.close()
    print(f"Roles seeded ({created} created).")
    return 0


def _cmd_create_admin(args: argparse.Namespace) -> int:
    settings = get_settings()
    password = settings.admin_password or getpass.getpass("Admin password: ")
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.", file=sys.stderr)
        return 1
    store = AccountStore(settings.database_url)
    try:
        seed_roles(store)
        account_id = seed_admin(store, args.email, password)
    finally:
        store.close()
    if account_id is None:
        print(f"  [!] An account for {args.email} already exists.", file=sys.stderr)
        return 1
    print(f"Created {RoleName.admin.value} account {account_id}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eatfast-auth",
        description="Eat Fast authentication service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py seed
  ADMIN_PASSWORD='S3cure!pass' python main.py create-admin admin@eatfast.local
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    serve.set_defaults(func=_cmd_serve)

    seed = sub.add_parser("seed", help="Create any missing default roles")
    seed.set_defaults(func=_cmd_seed)

    admin = sub.add_parser("create-admin", help="Create an active admin account")
    admin.add_argument("email", metavar="EMAIL")
    admin.set_defaults(func=_cmd_create_admin)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
