#!/usr/bin/env python3
"""
Create the photo library schema.

Usage:
    python init_db.py              # connect and create missing tables
    python init_db.py --check-only # only test the connection
    python init_db.py -v           # also show connection settings
"""

import argparse
import logging
import sys

from db.database import dispose_engine, get_db_info, init_db, verify_connection
from db.models import Base

logger = logging.getLogger(__name__)


def describe_schema() -> list[str]:
    """One line per table with its indexes."""
    lines = []
    for table in Base.metadata.sorted_tables:
        indexes = ", ".join(sorted(ix.name for ix in table.indexes)) or "none"
        lines.append(f"  {table.name}: {len(table.columns)} columns, indexes: {indexes}")
    return lines


def main() -> int:
    parser = argparse.ArgumentParser(description="Create the photo library database schema")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show connection settings")
    parser.add_argument(
        "--check-only",
        action="store_true",
        help="Verify the connection without creating tables",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        if args.verbose:
            for key, value in get_db_info().items():
                print(f"{key}: {value}")

        if not verify_connection():
            print("Could not connect. Check DATABASE_URL or the DB_* settings.")
            return 1
        if args.check_only:
            print("Connection OK.")
            return 0

        if not init_db():
            print("Table creation failed; see the log above.")
            return 1

        print("Schema ready:")
        print("\n".join(describe_schema()))
        return 0
    except ValueError as e:
        print(f"Configuration error: {e}")
        return 1
    finally:
        dispose_engine()


if __name__ == "__main__":
    sys.exit(main())
