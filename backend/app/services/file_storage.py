"""
Durable storage for candidate files received through the bot.

Files live in one flat directory and are served at a fixed public prefix, so the
filename is the only addressing scheme:

    contact-<ownerId>_<kind>_<YYYY-MM-DD>_<suffix><ext>

`contact-pending` marks a file written before its owner existed. The intake
pipeline never produces such names; `attach_owner` exists to repair old ones.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
import logging
import os
from pathlib import Path
import re
import tempfile
from uuid import uuid4

from fastapi import HTTPException

from ..utils.error_handlers import FileStorageError, ValidationError
from ..utils.validation import sanitize_filename

logger = logging.getLogger(__name__)

PENDING_OWNER = "pending"
OWNER_PREFIX = "contact-"
PENDING_PREFIX = f"{OWNER_PREFIX}{PENDING_OWNER}"
DEFAULT_EXTENSION = ".pdf"

RESUME = "resume"
DIPLOMA = "diploma"

_FILENAME_RE = re.compile(
    r"^contact-(?P<owner>[A-Za-z0-9]+)_(?P<kind>[a-z0-9_]+?)_(?P<date>\d{4}-\d{2}-\d{2})_(?P<suffix>[A-Za-z0-9]+)(?P<ext>\.[A-Za-z0-9]+)?$"
)
_KIND_RE = re.compile(r"^(resume|diploma|voice_q[1-9][0-9]*)$")
_EXT_RE = re.compile(r"^\.[A-Za-z0-9]{1,10}$")


def voice_kind(question_number: int) -> str:
    if int(question_number) < 1:
        raise ValidationError("Voice question number must be >= 1")
    return f"voice_q{int(question_number)}"


def owner_prefix(owner: str | int) -> str:
    owner = str(owner).strip()
    if not owner:
        raise ValidationError("Owner id is required (use PENDING_OWNER for no owner)")
    if not owner.isalnum():
        raise ValidationError(f"Invalid owner id: {owner!r}")
    return f"{OWNER_PREFIX}{owner}"


def normalize_extension(ext: str | None) -> str:
    ext = (ext or "").strip().lower()
    if ext and not ext.startswith("."):
        ext = f".{ext}"
    return ext if ext and _EXT_RE.match(ext) else DEFAULT_EXTENSION


def build_filename(
    owner: str | int,
    kind: str,
    ext: str | None = None,
    *,
    today: date | None = None,
    suffix: str | None = None,
) -> str:
    if not _KIND_RE.match(kind or ""):
        raise ValidationError(f"Unknown file kind: {kind!r}")
    day = (today or datetime.now(timezone.utc).date()).isoformat()
    suffix = suffix or uuid4().hex[:8]
    return f"{owner_prefix(owner)}_{kind}_{day}_{suffix}{normalize_extension(ext)}"


def parse_filename(filename: str) -> dict | None:
    m = _FILENAME_RE.match(filename or "")
    return m.groupdict() if m else None


def owner_from_filename(filename: str) -> str | None:
    parsed = parse_filename(filename)
    return parsed["owner"] if parsed else None


def filename_from_url(url: str) -> str:
    # Query strings/fragments are not part of the stored name.
    path = (url or "").split("?", 1)[0].split("#", 1)[0]
    return path.rstrip("/").rsplit("/", 1)[-1]


def is_pending_reference(url: str | None) -> bool:
    return bool(url) and PENDING_PREFIX in str(url)


@dataclass(frozen=True)
class StoredFile:
    filename: str
    url: str
    path: Path
    owner: str
    kind: str
    raw_file_id: str | None
    size_bytes: int

    @property
    def is_pending(self) -> bool:
        return self.owner == PENDING_OWNER


class FileStore:
    def __init__(self, base_dir: str | Path, public_base_url: str, *, max_bytes: int | None = None):
        self.base_dir = Path(base_dir)
        self.public_base_url = (public_base_url or "").rstrip("/")
        self.max_bytes = max_bytes

    def path_for(self, filename: str) -> Path:
        try:
            safe = sanitize_filename(filename)
        except HTTPException as e:
            raise ValidationError(str(e.detail)) from e
        if safe != filename:
            raise ValidationError("Invalid filename")
        return self.base_dir / safe

    def url_for(self, filename: str) -> str:
        return f"{self.public_base_url}/{filename}"

    def exists(self, filename: str) -> bool:
        try:
            return self.path_for(filename).is_file()
        except ValidationError:
            return False

    def store_inbound_file(
        self,
        raw_file_id: str | None,
        owner: str | int,
        kind: str,
        source_bytes: bytes,
        *,
        ext: str | None = None,
    ) -> StoredFile:
        """
        Persist `source_bytes` under an owner-prefixed name and return its public URL.

        Raises FileStorageError when the bytes cannot be written; nothing is left
        behind in that case, so callers must not record a URL.
        """
        if not source_bytes:
            raise FileStorageError("Refusing to store an empty file", details={"raw_file_id": raw_file_id})
        if self.max_bytes and len(source_bytes) > self.max_bytes:
            raise FileStorageError("File exceeds maximum size", details={"size": len(source_bytes)})

        owner = str(owner).strip()
        filename = build_filename(owner, kind, ext)
        dest = self.path_for(filename)
        if owner == PENDING_OWNER:
            logger.warning("Storing %s for %s without an owner; needs attach_owner()", kind, raw_file_id)

        self._write_atomic(dest, source_bytes)
        logger.info("Stored %s (%d bytes) as %s", kind, len(source_bytes), filename)
        return StoredFile(
            filename=filename,
            url=self.url_for(filename),
            path=dest,
            owner=owner,
            kind=kind,
            raw_file_id=raw_file_id,
            size_bytes=len(source_bytes),
        )

    def attach_owner(self, stored: StoredFile | str, owner_id: str | int) -> StoredFile:
        """Rename a `contact-pending_...` file to its real owner and return the new reference."""
        filename = stored.filename if isinstance(stored, StoredFile) else filename_from_url(stored)
        parsed = parse_filename(filename)
        if not parsed or parsed["owner"] != PENDING_OWNER:
            raise ValidationError(f"Not a pending file reference: {filename}")

        owner_id = str(owner_id).strip()
        if owner_id == PENDING_OWNER:
            raise ValidationError("Cannot attach the pending sentinel as an owner")
        new_filename = f"{owner_prefix(owner_id)}{filename[len(PENDING_PREFIX):]}"
        src = self.path_for(filename)
        dest = self.path_for(new_filename)
        if not src.is_file():
            raise FileStorageError("Pending file is missing from storage", details={"filename": filename})

        try:
            os.replace(src, dest)
        except OSError as e:
            raise FileStorageError(f"Failed to rename {filename}: {e}") from e

        logger.info("Attached %s to owner %s as %s", filename, owner_id, new_filename)
        return StoredFile(
            filename=new_filename,
            url=self.url_for(new_filename),
            path=dest,
            owner=owner_id,
            kind=parsed["kind"],
            raw_file_id=stored.raw_file_id if isinstance(stored, StoredFile) else None,
            size_bytes=dest.stat().st_size,
        )

    def restore_pending(self, filename: str, pending_filename: str) -> None:
        """Undo `attach_owner` when the new reference could not be written anywhere."""
        src = self.path_for(filename)
        dest = self.path_for(pending_filename)
        if not is_pending_reference(pending_filename):
            raise ValidationError(f"Not a pending file reference: {pending_filename}")
        try:
            os.replace(src, dest)
        except OSError as e:
            raise FileStorageError(f"Failed to restore {pending_filename}: {e}") from e
        logger.info("Restored %s back to %s", filename, pending_filename)

    def discard(self, filename: str) -> bool:
        path = self.path_for(filename)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise FileStorageError(f"Failed to remove {filename}: {e}") from e
        logger.info("Removed unreferenced file %s", filename)
        return True

    def cleanup_old_files(self, days_old: int = 30) -> int:
        if not self.base_dir.is_dir():
            return 0
        cutoff = (datetime.now(timezone.utc) - timedelta(days=days_old)).timestamp()
        removed = 0
        for entry in self.base_dir.iterdir():
            if entry.is_file() and entry.stat().st_mtime < cutoff:
                entry.unlink()
                removed += 1
                logger.info("Cleaned up old file: %s", entry.name)
        return removed

    def _write_atomic(self, dest: Path, data: bytes) -> None:
        tmp_name = None
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.base_dir, prefix=".incoming-")
            with os.fdopen(fd, "wb") as out:
                out.write(data)
            os.replace(tmp_name, dest)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            logger.error("File write failed for %s: %s", dest.name, e)
            raise FileStorageError(f"Failed to write {dest.name}") from e
