from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import sessionmaker

_BACKEND_DIR = Path(__file__).resolve().parents[1] / "backend"
if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))

from basira.db import session_scope  # noqa: E402
from basira.roles import resync_permission_snapshots  # noqa: E402


def _default_database_url() -> str:
    env = (os.environ.get("DATABASE_URL") or "").strip()
    if env:
        return env
    # Fallback to repo-local sqlite DB (useful for dev / CI without secrets).
    db_path = _BACKEND_DIR / "local.db"
    return f"sqlite:///{db_path}"


def _safe_url_for_logs(url: str) -> str:
    try:
        return make_url(url).render_as_string(hide_password=True)
    except Exception:
        # Avoid printing raw value if parsing fails.
        return "<unparsed DATABASE_URL>"


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(
        description="Recompute every user's stored hierarchy/permission snapshot from the role registry."
    )
    ap.add_argument("--database-url", default="", help="SQLAlchemy DATABASE_URL (defaults to env DATABASE_URL or backend/local.db).")
    ap.add_argument("--dry-run", action="store_true", help="Report how many users are out of date without writing.")
    args = ap.parse_args(argv)

    url = (args.database_url or "").strip() or _default_database_url()
    engine = create_engine(url, pool_pre_ping=True, future=True)
    factory = sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)

    try:
        with session_scope(factory) as db:
            changed = resync_permission_snapshots(db, dry_run=bool(args.dry_run))
    finally:
        engine.dispose()

    verb = "would change" if args.dry_run else "updated"
    print(f"{_safe_url_for_logs(url)}: {verb} {changed} user snapshot(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
