#!/usr/bin/env python3
"""
Report candidate file references that still carry the `contact-pending` owner.

    python audit_files.py                 # local candidates, report only
    python audit_files.py --source crm    # CRM contacts, report only
    python audit_files.py --apply         # rename files and rewrite references

Without --apply nothing is changed.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent))

from app.database import init_db, session_scope
from app.models.candidate import Candidate
from app.services.bitrix_client import FILE_FIELDS
from app.services.orphan_audit import (
    audit_file_references,
    repair_candidate_references,
    repair_crm_contacts,
)
from app.utils.dependencies import get_crm_client, get_file_store


def _print_report(report) -> None:
    print(f"Records checked:        {report.total}")
    print(f"With placeholder refs:  {len(report.stale_record_ids)}")
    print(f"With valid refs only:   {len(report.valid)}")
    print(f"Without files:          {len(report.no_files)}")
    for orphan in report.stale:
        print(f"  ✗ {orphan.record_id} {orphan.field}: {orphan.url}")


def _print_repairs(results) -> int:
    failed = 0
    for item in results:
        if item.new_url:
            print(f"  ✓ {item.orphan.record_id} {item.orphan.field} -> {item.new_url}")
        else:
            failed += 1
            print(f"  ✗ {item.orphan.record_id} {item.orphan.field}: {item.error}")
    return failed


def audit_db(apply: bool) -> bool:
    init_db()
    with session_scope() as db:
        candidates = db.query(Candidate).order_by(Candidate.id).all()
        report = audit_file_references(candidates)
        _print_report(report)
        if not apply or not report.stale:
            return True

        results = repair_candidate_references(db, candidates, report.stale, get_file_store())
        return _print_repairs(results) == 0


async def audit_crm(apply: bool) -> bool:
    crm = get_crm_client()
    contacts = await crm.list_contacts(["ID", "NAME", "LAST_NAME", *FILE_FIELDS])
    report = audit_file_references(contacts)
    _print_report(report)
    if not apply or not report.stale:
        return True

    results = await repair_crm_contacts(crm, report.stale, get_file_store())
    return _print_repairs(results) == 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Audit candidate file references for placeholder owners.")
    parser.add_argument("--source", choices=["db", "crm"], default="db", help="Where to read file references from")
    parser.add_argument("--apply", action="store_true", help="Rename pending files and rewrite the references")
    args = parser.parse_args(argv)

    print(f"Auditing file references ({args.source}{', apply' if args.apply else ', dry run'})...")
    if args.source == "crm":
        ok = asyncio.run(audit_crm(args.apply))
    else:
        ok = audit_db(args.apply)
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
