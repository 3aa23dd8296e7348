"""
Read-only sweep for file references that still carry the `contact-pending` owner.

Works on local Candidate rows and on CRM contact dicts. Auditing never mutates data;
repairs (`repair_crm_contacts`, `repair_candidate_references`) must be invoked
explicitly and rename a file back when its new reference cannot be saved.
"""
from dataclasses import dataclass, field
import logging
from typing import Any, Callable, Iterable, Iterator, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .bitrix_client import FILE_FIELDS
from .file_storage import FileStore, filename_from_url, is_pending_reference
from ..utils.error_handlers import AppError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrphanReference:
    record_id: str
    field: str
    url: str


@dataclass
class AuditReport:
    stale: list[OrphanReference] = field(default_factory=list)
    valid: list[str] = field(default_factory=list)  # record ids with only owner-prefixed refs
    no_files: list[str] = field(default_factory=list)
    total: int = 0

    @property
    def stale_record_ids(self) -> list[str]:
        return sorted({o.record_id for o in self.stale})

    def as_dict(self) -> dict:
        return {
            "total": self.total,
            "stale_records": len(self.stale_record_ids),
            "valid_records": len(self.valid),
            "records_without_files": len(self.no_files),
            "stale": [{"record_id": o.record_id, "field": o.field, "url": o.url} for o in self.stale],
        }


@dataclass(frozen=True)
class OrphanRepair:
    orphan: OrphanReference
    owner_id: str | None
    new_url: str | None = None
    error: str | None = None


def _record_id(record: Any) -> str:
    if isinstance(record, Mapping):
        return str(record.get("ID") or record.get("id") or "")
    return str(getattr(record, "id", "") or "")


def record_file_references(record: Any) -> Iterator[tuple[str, str]]:
    """(field, url) for every non-empty file reference on a Candidate or a CRM contact dict."""
    if isinstance(record, Mapping):
        for crm_field in FILE_FIELDS:
            value = record.get(crm_field)
            if isinstance(value, str) and value.strip():
                yield crm_field, value.strip()
        return

    for attr in ("resume_url", "diploma_url"):
        value = getattr(record, attr, None)
        if value:
            yield attr, value
    for i, url in enumerate(getattr(record, "voice_urls", None) or []):
        if url:
            yield f"voice_urls[{i}]", url


def find_orphan_file_references(records: Iterable[Any]) -> list[OrphanReference]:
    return audit_file_references(records).stale


def audit_file_references(records: Iterable[Any]) -> AuditReport:
    report = AuditReport()
    for record in records:
        report.total += 1
        record_id = _record_id(record)
        refs = list(record_file_references(record))
        if not refs:
            report.no_files.append(record_id)
            continue

        stale = [OrphanReference(record_id=record_id, field=f, url=u) for f, u in refs if is_pending_reference(u)]
        if stale:
            report.stale.extend(stale)
        else:
            report.valid.append(record_id)

    if report.stale:
        logger.warning(
            "Found %d placeholder file references on %d records",
            len(report.stale),
            len(report.stale_record_ids),
        )
    return report


def plan_orphan_repairs(
    orphans: Iterable[OrphanReference],
    owner_for_record: Callable[[str], str | None],
) -> list[OrphanRepair]:
    """Pair each orphan with the owner id it should have carried. Pure."""
    plan = []
    for orphan in orphans:
        owner_id = owner_for_record(orphan.record_id)
        plan.append(OrphanRepair(orphan=orphan, owner_id=owner_id, error=None if owner_id else "owner unknown"))
    return plan


def apply_orphan_repairs(plan: Iterable[OrphanRepair], store: FileStore) -> list[OrphanRepair]:
    """Rename each pending file to its owner. Returns outcomes; callers persist the new URLs."""
    done = []
    for item in plan:
        if not item.owner_id:
            done.append(item)
            continue
        filename = filename_from_url(item.orphan.url)
        try:
            stored = store.attach_owner(filename, item.owner_id)
        except AppError as e:
            logger.error("Could not repair %s on %s: %s", item.orphan.field, item.orphan.record_id, e.message)
            done.append(OrphanRepair(orphan=item.orphan, owner_id=item.owner_id, error=e.message))
            continue
        done.append(OrphanRepair(orphan=item.orphan, owner_id=item.owner_id, new_url=stored.url))
    return done


def revert_orphan_repair(item: OrphanRepair, store: FileStore, reason: str) -> OrphanRepair:
    """Put a renamed file back under its pending name so the old reference keeps resolving."""
    if not item.new_url:
        return item
    try:
        store.restore_pending(filename_from_url(item.new_url), filename_from_url(item.orphan.url))
    except AppError as e:
        logger.error("Could not restore %s for %s: %s", item.orphan.url, item.orphan.record_id, e.message)
        reason = f"{reason}; restore failed: {e.message}"
    return OrphanRepair(orphan=item.orphan, owner_id=item.owner_id, error=reason)


def _by_record(orphans: Iterable[OrphanReference]) -> dict[str, list[OrphanReference]]:
    grouped: dict[str, list[OrphanReference]] = {}
    for orphan in orphans:
        grouped.setdefault(orphan.record_id, []).append(orphan)
    return grouped


async def repair_crm_contacts(crm, orphans: Iterable[OrphanReference], store: FileStore) -> list[OrphanRepair]:
    """
    Rename pending files to their contact and write the new URLs to the CRM, one contact
    at a time. When the CRM write fails the files are renamed back and the next contact
    is still processed.
    """
    outcomes: list[OrphanRepair] = []
    for contact_id, refs in _by_record(orphans).items():
        # A contact's own id is the owner its files should carry.
        results = apply_orphan_repairs(plan_orphan_repairs(refs, lambda record_id: record_id or None), store)
        fields = {r.orphan.field: r.new_url for r in results if r.new_url}
        if fields:
            try:
                await crm.update_contact(contact_id, fields)
            except AppError as e:
                logger.error("CRM update failed for contact %s: %s", contact_id, e.message)
                results = [revert_orphan_repair(r, store, f"CRM update failed: {e.message}") for r in results]
        outcomes.extend(results)
    return outcomes


def repair_candidate_references(
    db: Session,
    candidates: Iterable[Any],
    orphans: Iterable[OrphanReference],
    store: FileStore,
) -> list[OrphanRepair]:
    """Same as `repair_crm_contacts` for local Candidate rows; one commit per candidate."""
    by_id = {str(c.id): c for c in candidates}
    outcomes: list[OrphanRepair] = []
    for record_id, refs in _by_record(orphans).items():
        candidate = by_id.get(record_id)
        owner_id = getattr(candidate, "crm_contact_id", None)
        results = apply_orphan_repairs(plan_orphan_repairs(refs, lambda _: owner_id), store)
        changed = [r for r in results if r.new_url]
        if changed:
            for r in changed:
                assign_file_reference(candidate, r.orphan.field, r.new_url)
            try:
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Saving repaired references failed for candidate %s: %s", record_id, e)
                results = [revert_orphan_repair(r, store, "database update failed") for r in results]
        outcomes.extend(results)
    return outcomes


def assign_file_reference(record: Any, field: str, url: str) -> None:
    """Write `url` back to the field `record_file_references` reported it under."""
    if isinstance(record, dict):
        record[field] = url
        return
    if field.startswith("voice_urls["):
        index = int(field[len("voice_urls["):-1])
        voice = list(record.voice_urls)
        while len(voice) <= index:
            voice.append("")
        voice[index] = url
        record.voice_urls = voice
        return
    setattr(record, field, url)
