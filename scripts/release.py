"""
Release-phase helper.

- Fail fast if DATABASE_URL or TENANT_DATABASE_URL is missing (no silent SQLite in prod).
- Run both Alembic trees: `app` (identity, tenants) and `tenant` (business data).
- Seed permissions/roles/default tenant/admin user (idempotent; does NOT overwrite passwords).

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


def _require_env(name: str) -> str:
    v = (os.environ.get(name) or "").strip()
    if not v:
        raise RuntimeError(f"Missing required environment variable {name}.")
    return v


def _upgrade(section: str, db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"), ini_section=section)
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


def run_release() -> None:
    db_url = _require_env("DATABASE_URL")
    tenant_db_url = _require_env("TENANT_DATABASE_URL")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        for name, url in (("DATABASE_URL", db_url), ("TENANT_DATABASE_URL", tenant_db_url)):
            if url.startswith("sqlite"):
                raise RuntimeError(f"Refusing to run release on sqlite {name} in production. Set it to Postgres.")

    print("=== boothcrm release start ===", flush=True)
    print(f"ENV={env or '(unset)'}", flush=True)

    print("Running app DB migrations...", flush=True)
    _upgrade("app", db_url)
    print("Running tenant DB migrations...", flush=True)
    _upgrade("tenant", tenant_db_url)
    print("Migrations complete.", flush=True)

    print("Seeding permissions/roles/admin (idempotent)...", flush=True)
    from scripts import init_db

    init_db.seed_only(database_url=db_url)
    print("Seed complete.", flush=True)
    print("=== boothcrm release done ===", flush=True)


def main() -> None:
    run_release()


if __name__ == "__main__":
    main()
