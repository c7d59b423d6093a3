"""
Release phase for the open mics API: bring the schema to head, then make sure
an admin account exists to log in with.

Both steps are idempotent, so every deploy runs them.

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from alembic import command
from alembic.config import Config

from app.openmics.config import Settings, load_settings
from scripts import init_db


def check_settings(settings: Settings) -> None:
    """Refuse to migrate a throwaway SQLite file when running in production."""
    if not settings.is_production:
        return
    if not (os.environ.get("DATABASE_URL") or "").strip():
        raise RuntimeError("DATABASE_URL is required in production.")
    if settings.database_url.startswith("sqlite"):
        raise RuntimeError("Refusing to run release on sqlite DATABASE_URL in production. Set DATABASE_URL to Postgres.")


def alembic_config(db_url: str) -> Config:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    # configparser interpolation: escape percent-encoded credentials.
    cfg.set_main_option("sqlalchemy.url", db_url.replace("%", "%%"))
    # migrations/env.py keeps this URL instead of re-reading the environment.
    cfg.attributes["database_url"] = db_url
    return cfg


def migrate(db_url: str, revision: str = "head") -> None:
    print(f"Upgrading schema to {revision}...", flush=True)
    command.upgrade(alembic_config(db_url), revision)
    print("Schema is current.", flush=True)


def run_release(settings: Settings | None = None) -> None:
    settings = settings or load_settings()
    check_settings(settings)

    print("=== openmics release start ===", flush=True)
    print(f"ENV={settings.env}", flush=True)
    migrate(settings.database_url)
    init_db.seed_only(settings)
    print("=== openmics release done ===", flush=True)


def main() -> None:
    run_release()


if __name__ == "__main__":
    main()
