#!/usr/bin/env python3
"""
awesome-my backend - public catalogue + per-user management API.
"""

import argparse
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep package imports lazy (inside branches) so `--migrate` does not import FastAPI
# and `--serve` does not import the migration runner.
#


def migrate() -> int:
    from awesomemy.db.config import build_postgres_dsn, load_database_config
    from awesomemy.db.migrate import apply_migrations

    dsn = build_postgres_dsn(load_database_config())
    if not dsn:
        print("Postgres not configured (set POSTGRES_DSN or POSTGRES_* env vars).", file=sys.stderr)
        return 2
    versions = apply_migrations(dsn=dsn)
    if versions:
        print(f"Applied {len(versions)} migration(s): {', '.join(versions)}")
    else:
        print("No pending migrations.")
    return 0


def purge_sessions() -> int:
    from awesomemy.auth.session import PostgresSessionStore
    from awesomemy.db.config import build_postgres_dsn, load_database_config

    dsn = build_postgres_dsn(load_database_config())
    if not dsn:
        print("Postgres not configured (set POSTGRES_DSN or POSTGRES_* env vars).", file=sys.stderr)
        return 2
    n = PostgresSessionStore(dsn).delete_expired()
    print(f"Deleted {n} expired session(s).")
    return 0


def main() -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="awesome-my backend API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Apply database migrations
  python main.py --migrate

  # Serve the HTTP API
  python main.py --serve --port 8080
        """,
    )
    parser.add_argument("--serve", action="store_true", help="Run the HTTP API server")
    parser.add_argument("--migrate", action="store_true", help="Apply pending Postgres migrations and exit")
    parser.add_argument("--purge-sessions", action="store_true", help="Delete expired sessions from Postgres and exit")
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Server listen port (default: 8080)")
    parser.add_argument("--debug", action="store_true", help="Log at debug level")

    args = parser.parse_args()
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.migrate:
        return migrate()

    if args.purge_sessions:
        return purge_sessions()

    if args.serve:
        from awesomemy.api.server import run

        run(host=args.host, port=args.port)
        return 0

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
