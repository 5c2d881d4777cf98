"""Marketplace database management CLI.

Provides commands to create and drop the database schema for the
marketplace domain, plus a one-off sweep for operators.

Usage:
    python src/manage.py setup-db   # Create all tables
    python src/manage.py drop-db    # Drop all tables
    python src/manage.py sweep      # Release due escrows, flag stale payments
"""

import argparse
import sys


def setup_database():
    """Create the marketplace database schema."""
    from marketplace.domain import marketplace
    from marketplace.utils.db import setup_db

    print("Initializing marketplace domain...")
    marketplace.init()
    print("Creating marketplace database schema...")
    setup_db(marketplace)
    print("Done.")


def drop_database():
    """Drop the marketplace database schema."""
    from marketplace.domain import marketplace
    from marketplace.utils.db import drop_db

    print("Initializing marketplace domain...")
    marketplace.init()
    print("Dropping marketplace database schema...")
    drop_db(marketplace)
    print("Done.")


def sweep():
    from marketplace.domain import marketplace
    from server import run_sweeps

    marketplace.init()
    result = run_sweeps(marketplace)
    print(f"Released {len(result['released'])} escrow(s), flagged {len(result['flagged'])} payment(s).")


def main():
    parser = argparse.ArgumentParser(description="Marketplace database management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")
    subparsers.add_parser("sweep", help="Run the escrow and reconciliation sweeps once")

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    elif args.command == "sweep":
        sweep()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
