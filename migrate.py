from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config

from failwatch.config import load_settings
from failwatch.db import Database


def run_migrations() -> None:
    root = Path(__file__).resolve().parent
    alembic_cfg = Config(str(root / "alembic.ini"))
    command.upgrade(alembic_cfg, "head")


if __name__ == "__main__":
    run_migrations()
    Database(load_settings()).check_connection()
    print("Migrations complete.")
