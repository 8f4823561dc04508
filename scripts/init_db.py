from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from raffledraw.db.engine import make_engine

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def alembic_config() -> Config:
    cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    return cfg


def upgrade_db(target_revision: str = "head") -> None:
    """Apply Alembic migrations up to ``target_revision``."""
    command.upgrade(alembic_config(), target_revision)


def print_tables() -> None:
    """Print every table of the configured database with its row count."""
    engine = make_engine()
    insp = inspect(engine)
    with engine.connect() as conn:
        for name in sorted(insp.get_table_names()):
            if name == "alembic_version":
                continue
            count = conn.exec_driver_sql(f'SELECT COUNT(*) FROM "{name}"').scalar()
            print(f"{name}: {count} rows")


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    upgrade_db()
    print_tables()


if __name__ == "__main__":
    main()
