#!/usr/bin/env python3
"""
Create the marketplace tables and, optionally, the first admin account.

Tables: users, projects, proposals, contracts, milestones, transactions,
disputes, support_tickets, reviews, conversations, messages, notifications.
Existing tables are left alone (nothing is dropped).

Admins cannot register through the API, so the first one is seeded here:

    python scripts/init_database.py --admin-email ops@talenthive.io

Uses DATABASE_URL and AUTH_TOKEN_SECRET from the environment / .env.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()

sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError

from talenthive.database.postgres_real import PostgresDB
from talenthive.domain.states import UserRole
from talenthive.utils.config_loader import load_settings
from talenthive.utils.tokens import issue_token


def seed_admin(db: PostgresDB, email: str, token_secret: str) -> None:
    user = db.get_user_by_email(email.strip().lower())
    if user is None:
        user = db.create_user(email=email.strip().lower(), first_name="Platform", last_name="Admin", role=UserRole.ADMIN.value)
        print(f"✅ Admin account created: {user.email}")
    elif user.role != UserRole.ADMIN.value:
        print(f"❌ {email} already exists with role '{user.role}'", file=sys.stderr)
        return
    else:
        print(f"Admin account already exists: {user.email}")
    print(f"   Bearer token: {issue_token(user.id, token_secret)}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Create TalentHive tables in Postgres.")
    parser.add_argument("--admin-email", default=None, help="Create (or show the token for) this admin account")
    args = parser.parse_args()

    settings = load_settings()
    if not settings.database_url:
        print("DATABASE_URL is not set", file=sys.stderr)
        return 1

    try:
        db = PostgresDB(settings.database_url)
        db.ping()
        print("✅ Database connection OK")

        db.create_tables()
        print("✅ Tables:", sorted(inspect(db.engine).get_table_names()))

        if args.admin_email:
            seed_admin(db, args.admin_email, settings.auth_token_secret)
        return 0

    except OperationalError as e:
        print(f"❌ Failed to connect to database: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
