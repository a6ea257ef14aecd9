"""Drop and recreate all marketplace tables, optionally deleting the local SQLite file."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tokenmarket.config import settings
from tokenmarket.database import dispose_engine, drop_db, init_db

ROOT = Path(__file__).resolve().parent.parent


def _sqlite_files() -> list[Path]:
    if not settings.database_url.startswith("sqlite"):
        return []
    db_path = Path(settings.database_url.split("///", 1)[-1])
    if not db_path.is_absolute():
        db_path = ROOT / db_path
    return [db_path, db_path.with_name(db_path.name + "-wal"), db_path.with_name(db_path.name + "-shm")]


def _remove_sqlite_files() -> None:
    removed = 0
    for path in _sqlite_files():
        if path.exists():
            path.unlink()
            removed += 1
    print(f"Removed {removed} SQLite file(s).")


async def _reset_db() -> None:
    print("Dropping all tables...")
    await drop_db()
    print("Creating all tables...")
    await init_db()
    await dispose_engine()
    print("Database reset complete.")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reset the local marketplace database.")
    parser.add_argument(
        "--delete-sqlite-file",
        action="store_true",
        help="Delete the SQLite database file (and WAL/SHM side files) before recreating tables.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    if args.delete_sqlite_file:
        _remove_sqlite_files()
    asyncio.run(_reset_db())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
