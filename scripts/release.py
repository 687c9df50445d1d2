"""
Release step for a Feebook deploy: migrate the schema, then seed the first moderator.

In production it also refuses to continue when the deploy is obviously misconfigured
(SQLite database, default SECRET_KEY, sandbox Cashfree keys).

Usage:
  python scripts/release.py [--skip-seed]
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.feebook.config import Settings, load_settings  # noqa: E402


def production_problems(settings: Settings) -> list[str]:
    if settings.env.lower() not in ("prod", "production"):
        return []
    problems = []
    if settings.database_url.startswith("sqlite"):
        problems.append("DATABASE_URL points at SQLite; use Postgres in production.")
    if settings.secret_key in ("", "change-me"):
        problems.append("SECRET_KEY is unset or still the default.")
    if settings.cashfree_environment != "production":
        problems.append(f"CASHFREE_ENVIRONMENT is {settings.cashfree_environment!r}, expected 'production'.")
    if not (settings.cashfree_app_id and settings.cashfree_app_secret):
        problems.append("CASHFREE_APP_ID / CASHFREE_APP_SECRET are not set.")
    return problems


def migrate(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


def run_release(*, seed: bool = True) -> None:
    settings = load_settings()
    problems = production_problems(settings)
    if problems:
        raise RuntimeError("Release aborted:\n  - " + "\n  - ".join(problems))

    print(f"[release] env={settings.env} backend={settings.database_url.split(':', 1)[0]}", flush=True)
    migrate(settings.database_url)
    print("[release] schema at head", flush=True)

    if seed:
        from scripts.init_db import seed_only

        seed_only(database_url_override=settings.database_url)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Migrate and seed the Feebook database")
    parser.add_argument("--skip-seed", action="store_true", help="Only run migrations")
    args = parser.parse_args(argv)
    run_release(seed=not args.skip_seed)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
