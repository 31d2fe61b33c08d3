#!/usr/bin/env python3
"""
EventoPro auth service entry point.

Commands:
  serve         Run the HTTP API (uvicorn)
  migrate       Apply pending SQL migrations (--status to only list them)
  create-admin  Create the admin account, or promote it if it exists
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

log_level = os.getenv("LOG_LEVEL", "info").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger("eventopro")

#
# NOTE: Keep package imports lazy (inside functions) so `migrate` does not import
# the web stack and `serve` reads env only after logging is configured.
#


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from eventopro.api.server import create_app

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )
    logger.info("Starting auth API on %s:%d (log_level=%s)", args.host, args.port, log_level)
    uvicorn.run(create_app(), host=args.host, port=args.port, log_level=uvicorn_log_level)
    return 0


def _postgres_dsn() -> Optional[str]:
    from eventopro.db.config import build_postgres_dsn, load_db_config

    dsn = build_postgres_dsn(load_db_config())
    if not dsn:
        print("Postgres not configured (set POSTGRES_DSN or POSTGRES_* env vars).")
    return dsn


def cmd_migrate(args: argparse.Namespace) -> int:
    from eventopro.db.migrate import MigrationError, apply_migrations, migration_status

    dsn = _postgres_dsn()
    if not dsn:
        return 2

    if args.status:
        status = migration_status(dsn=dsn)
        for version in status.applied:
            print(f"applied   {version}")
        for m in status.pending:
            print(f"pending   {m.version}")
        for version in status.modified:
            print(f"MODIFIED  {version}")
        for version in status.unknown:
            print(f"unknown   {version}")
        return 1 if status.modified else 0

    try:
        n, versions = apply_migrations(dsn=dsn)
    except MigrationError as e:
        print(f"Migration refused: {e}")
        return 1
    if n:
        print(f"Applied {n} migration(s): {', '.join(versions)}")
    else:
        print("No pending migrations.")
    return 0


def cmd_create_admin(args: argparse.Namespace) -> int:
    from eventopro.auth.accounts import bootstrap_admin
    from eventopro.auth.config import load_auth_config
    from eventopro.auth.exceptions import AuthError
    from eventopro.storage.pg_store import pg_stores

    # Postgres only; in-memory stores would vanish with this process.
    dsn = _postgres_dsn()
    if not dsn:
        return 2

    cfg = load_auth_config()
    password = args.password or cfg.admin_initial_password
    if not password:
        print("Provide --password or set ADMIN_INITIAL_PASSWORD.")
        return 2
    try:
        user = bootstrap_admin(
            pg_stores(dsn),
            username=args.username or cfg.admin_initial_username,
            password=password,
            email=args.email or cfg.admin_initial_email,
        )
    except AuthError as e:
        print(f"Could not create admin: {e.message}")
        return 1
    print(f"Admin ready: id={user.id} username={user.username} role={user.role}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="EventoPro auth service")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    serve.add_argument("--port", type=int, default=int(os.getenv("PORT", "8080")))
    serve.set_defaults(func=cmd_serve)

    migrate = sub.add_parser("migrate", help="Apply pending SQL migrations")
    migrate.add_argument("--status", action="store_true", help="List applied and pending migrations; change nothing")
    migrate.set_defaults(func=cmd_migrate)

    create_admin = sub.add_parser("create-admin", help="Create or promote the admin account")
    create_admin.add_argument("--username", default=None)
    create_admin.add_argument("--password", default=None)
    create_admin.add_argument("--email", default=None)
    create_admin.set_defaults(func=cmd_create_admin)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
