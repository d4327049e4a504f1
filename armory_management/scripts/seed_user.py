#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from db.base import Base  # noqa: E402
from models import armory_models  # noqa: E402,F401
from services.allocation_errors import ArmoryError  # noqa: E402
from services.user_service import upsert_user  # noqa: E402


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create/update one armory user record directly from terminal.",
    )
    parser.add_argument("--email", required=True, help="User email; used as the lookup key")
    parser.add_argument("--name", required=True, help="Full display name")
    parser.add_argument("--admin", action="store_true", help="Mark the user as an administrator")
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before writing (fresh databases).",
    )
    parser.add_argument(
        "--db-url",
        default=os.environ.get("ARMORY_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to ARMORY_DB_URL env var.",
    )
    return parser


def main() -> int:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args()
    if not args.db_url:
        parser.error("Missing DB URL. Set ARMORY_DB_URL or pass --db-url.")

    engine = create_engine(args.db_url, pool_pre_ping=True, future=True)
    if args.create_tables:
        Base.metadata.create_all(engine)
    session_factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)

    with session_factory() as db:
        try:
            user, created = upsert_user(db, args.name, args.email, is_admin=args.admin)
        except ArmoryError as exc:
            parser.error(exc.message)

    print(
        f"OK user_id={user.UserID} email={user.Email} admin={bool(user.IsAdmin)} "
        f"{'created' if created else 'updated'}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
