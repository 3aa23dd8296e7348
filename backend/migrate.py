#!/usr/bin/env python3
"""
Create all tables and add candidate columns introduced after the first schema.
Run this after updating the models.
"""

import sys
from pathlib import Path

from sqlalchemy import inspect, text

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent))

from app.database import init_db, Base, engine

CANDIDATE_COLUMNS = {
    "telegram_username": "VARCHAR(255)",
    "bot_id": "INTEGER",
    "crm_deal_id": "VARCHAR(50)",
    "voice_urls_json": "TEXT",
    "answers_json": "TEXT",
}

USER_COLUMNS = {
    "last_login_at": "DATETIME",
}


def migrate():
    print("Initializing database with all models...")
    init_db()
    print("✓ Database initialized successfully")

    inspector = inspect(engine)
    existing = {c["name"] for c in inspector.get_columns("candidates")}

    added = []
    for col, col_type in CANDIDATE_COLUMNS.items():
        if col in existing:
            continue
        try:
            with engine.begin() as conn:
                conn.execute(text(f"ALTER TABLE candidates ADD COLUMN {col} {col_type}"))
            added.append(col)
        except Exception as e:
            print(f"✗ Failed to add column {col}: {e}")

    existing_users = {c["name"] for c in inspector.get_columns("users")}
    for col, col_type in USER_COLUMNS.items():
        if col in existing_users:
            continue
        try:
            with engine.begin() as conn:
                conn.execute(text(f"ALTER TABLE users ADD COLUMN {col} {col_type}"))
            added.append(f"users.{col}")
        except Exception as e:
            print(f"✗ Failed to add column users.{col}: {e}")

    if added:
        print(f"✓ Added columns: {', '.join(added)}")
    else:
        print("✓ Columns already up to date")

    missing = [
        name
        for name in ("companies", "departments", "department_positions", "positions", "candidates", "intake_sessions")
        if name not in Base.metadata.tables
    ]
    if missing:
        print(f"✗ Tables not registered: {', '.join(missing)}")
        return False

    print("✓ All tables present")
    return True


if __name__ == "__main__":
    success = migrate()
    sys.exit(0 if success else 1)
