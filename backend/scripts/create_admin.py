"""
Seed the first administrator.

    DEFAULT_ADMIN_EMAIL=... DEFAULT_ADMIN_PASSWORD=... python backend/scripts/create_admin.py

Does nothing when an admin already exists.
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

_BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))

from basira.config import database_url  # noqa: E402
from basira.db import session_scope  # noqa: E402
from basira.models import User  # noqa: E402
from basira.roles import Role  # noqa: E402
from basira.users import create_user  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Create the first admin user if none exists.")
    ap.add_argument("--database-url", default="", help="SQLAlchemy DATABASE_URL (defaults to env DATABASE_URL).")
    args = ap.parse_args(argv)

    email = (os.environ.get("DEFAULT_ADMIN_EMAIL") or "").strip()
    password = (os.environ.get("DEFAULT_ADMIN_PASSWORD") or "").strip()
    phone = (os.environ.get("DEFAULT_ADMIN_PHONE") or "").strip()
    if not email or not password:
        raise SystemExit("DEFAULT_ADMIN_EMAIL and DEFAULT_ADMIN_PASSWORD are required")

    engine = create_engine((args.database_url or "").strip() or database_url(), future=True)
    factory = sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    try:
        with session_scope(factory) as db:
            existing = db.execute(select(User).where(User.role == Role.ADMIN.value).limit(1)).scalar_one_or_none()
            if existing is not None:
                print(f"Admin user already exists: {existing.email}")
                return 0
            admin = create_user(
                db,
                email=email,
                password=password,
                name="System Administrator",
                phone=phone,
                role=Role.ADMIN,
            )
            print(f"Admin user created: {admin.email}")
    finally:
        engine.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
