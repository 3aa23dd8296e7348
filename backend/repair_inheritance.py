#!/usr/bin/env python3
"""
Fill empty position location/city/country from the linked department's company.
Explicit values are never overwritten, so this is safe to re-run.
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent))

from app.database import init_db, session_scope
from app.services.inheritance import repair_all_positions


def repair():
    print("Applying inherited fields to positions...")
    init_db()
    with session_scope() as db:
        summary = repair_all_positions(db)

    print(f"✓ Updated {summary.updated} of {summary.total} positions")
    print(f"  Skipped: {summary.skipped}")
    if summary.missing_parent:
        print(f"⚠ {summary.missing_parent} positions have no department/company to inherit from")
    return True


if __name__ == "__main__":
    success = repair()
    sys.exit(0 if success else 1)
