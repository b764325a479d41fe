"""Create or upgrade the drawing database and seed the stock categories.

Usage::

    python scripts/init_db.py                # upgrade to head and seed
    python scripts/init_db.py 0001 --no-seed # stop at a revision, no seeding
"""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from drawengine.config import EngineSettings
from drawengine.db.engine import get_sessionmaker, make_engine
from drawengine.defaults import seed_default_categories

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def alembic_config() -> Config:
    cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    return cfg


def upgrade_db(target_revision: str = "head") -> None:
    """Apply Alembic migrations up to ``target_revision``."""
    command.upgrade(alembic_config(), target_revision)


def report_tables(database_url: str) -> list[str]:
    engine = make_engine(database_url)
    try:
        tables = sorted(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    print("Current tables:", ", ".join(tables))
    return tables


def seed_categories(database_url: str) -> list[str]:
    """Insert the stock recurrence categories that are missing; return their names."""
    engine = make_engine(database_url)
    try:
        with get_sessionmaker(engine).begin() as session:
            names = [c.internal_name for c in seed_default_categories(session)]
    finally:
        engine.dispose()
    print("Seeded categories:", ", ".join(names) if names else "(none)")
    return names


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "revision", nargs="?", default="head", help="Alembic revision to upgrade to"
    )
    parser.add_argument(
        "--no-seed", action="store_true", help="skip inserting the stock categories"
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    settings = EngineSettings.from_env()
    upgrade_db(args.revision)
    if not args.no_seed:
        seed_categories(settings.database_url)
    report_tables(settings.database_url)


if __name__ == "__main__":
    main()
