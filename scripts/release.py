"""
Release phase: bring the schema to head, verify card positions are stored as
doubles, seed the system user.

Usage:
  python scripts/release.py            # upgrade + verify + seed
  python scripts/release.py --check    # verify only, no writes

Environment:
  DATABASE_URL (required), ENV
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _database_url() -> str:
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL is required for a release.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to release against sqlite in production; point DATABASE_URL at Postgres.")
    return db_url


def upgrade_schema(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    # Absolute so the release can run from any working directory.
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


def check_schema(db_url: str) -> None:
    from sqlalchemy import create_engine

    from app.boards.db import position_column_problems

    engine = create_engine(db_url, future=True)
    try:
        problems = position_column_problems(engine)
    finally:
        engine.dispose()
    if problems:
        raise RuntimeError(f"Schema check failed: {', '.join(problems)}")


def run_release(*, check_only: bool = False) -> None:
    db_url = _database_url()
    if not check_only:
        print("Upgrading schema to head...", flush=True)
        upgrade_schema(db_url)
    check_schema(db_url)
    print("cards.position is double precision.", flush=True)
    if not check_only:
        from scripts import init_db

        init_db.seed_only(database_url=db_url)


def main() -> int:
    parser = argparse.ArgumentParser(description="Run migrations, verify the schema and seed")
    parser.add_argument("--check", action="store_true", help="Only verify the schema")
    args = parser.parse_args()
    try:
        run_release(check_only=args.check)
    except RuntimeError as e:
        print(f"Release failed: {e}", file=sys.stderr, flush=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
