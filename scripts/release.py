"""
Release step: `alembic upgrade head`, then the idempotent seed from init_db.

    DATABASE_URL=... python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scripts import init_db  # noqa: E402


def alembic_config(db_url: str) -> Config:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    # alembic.ini values go through configparser interpolation
    cfg.set_main_option("sqlalchemy.url", db_url.replace("%", "%%"))
    return cfg


def run_release() -> None:
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL must be set for a release.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Production releases need a Postgres DATABASE_URL, not sqlite.")

    print(f"Migrating metafield-console schema (ENV={env or 'unset'})", flush=True)
    command.upgrade(alembic_config(db_url), "head")
    init_db.seed_only(database_url=db_url)
    print("Release complete.", flush=True)


if __name__ == "__main__":
    run_release()
