import os
from datetime import date

import pytest

from backend.app.services.file_storage import (
    PENDING_OWNER,
    build_filename,
    filename_from_url,
    is_pending_reference,
    owner_from_filename,
    parse_filename,
    voice_kind,
)
from backend.app.utils.error_handlers import FileStorageError, ValidationError

BASE_URL = "https://files.example.test/uploads/telegram-files"


def test_build_filename_layout():
    name = build_filename("4821", "resume", ".PDF", today=date(2025, 7, 16), suffix="a1b2c3d4")
    assert name == "contact-4821_resume_2025-07-16_a1b2c3d4.pdf"

    voice = build_filename("4821", voice_kind(2), "oga", today=date(2025, 7, 16), suffix="0000ffff")
    assert voice == "contact-4821_voice_q2_2025-07-16_0000ffff.oga"
    assert parse_filename(voice)["kind"] == "voice_q2"


def test_unknown_extension_defaults_to_pdf():
    name = build_filename("7", "diploma", None, today=date(2025, 1, 2), suffix="abcdabcd")
    assert name.endswith(".pdf")
    assert build_filename("7", "diploma", ".tar.gz!", suffix="abcdabcd").endswith(".pdf")


def test_build_filename_rejects_bad_input():
    with pytest.raises(ValidationError):
        build_filename("7", "photo", ".jpg")
    with pytest.raises(ValidationError):
        build_filename("../7", "resume", ".pdf")
    with pytest.raises(ValidationError):
        voice_kind(0)


def test_url_parsing_helpers():
    url = f"{BASE_URL}/contact-pending_resume_2025-07-16_a1b2c3d4.pdf?download=1"
    assert filename_from_url(url) == "contact-pending_resume_2025-07-16_a1b2c3d4.pdf"
    assert owner_from_filename(filename_from_url(url)) == PENDING_OWNER
    assert is_pending_reference(url)
    assert not is_pending_reference(f"{BASE_URL}/contact-12_resume_2025-07-16_a1b2c3d4.pdf")
    assert not is_pending_reference(None)
    assert owner_from_filename("random.pdf") is None


def test_store_inbound_file_uses_real_owner(file_store):
    stored = file_store.store_inbound_file("BQAC1", 4821, "resume", b"%PDF", ext=".pdf")

    assert stored.owner == "4821"
    assert stored.filename.startswith("contact-4821_resume_")
    assert stored.url == f"{BASE_URL}/{stored.filename}"
    assert stored.path.read_bytes() == b"%PDF"
    assert stored.size_bytes == 4
    assert not stored.is_pending
    # No temp files left behind.
    assert [p.name for p in file_store.base_dir.iterdir()] == [stored.filename]


def test_store_rejects_empty_and_oversized(file_store):
    with pytest.raises(FileStorageError):
        file_store.store_inbound_file("BQAC1", "1", "resume", b"")

    file_store.max_bytes = 3
    with pytest.raises(FileStorageError):
        file_store.store_inbound_file("BQAC1", "1", "resume", b"1234")


def test_storage_failure_leaves_no_file(file_store, monkeypatch):
    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", broken_replace)

    with pytest.raises(FileStorageError):
        file_store.store_inbound_file("BQAC1", "1", "resume", b"%PDF")
    assert list(file_store.base_dir.iterdir()) == []


def test_attach_owner_renames_pending_file(file_store):
    pending = file_store.store_inbound_file("BQAC1", PENDING_OWNER, "diploma", b"img", ext=".jpg")
    assert pending.is_pending
    assert is_pending_reference(pending.url)

    attached = file_store.attach_owner(pending, "990")
    assert attached.filename == pending.filename.replace("contact-pending_", "contact-990_")
    assert attached.url.endswith(attached.filename)
    assert attached.path.read_bytes() == b"img"
    assert not pending.path.exists()

    # Accepts a URL as well; a non-pending reference is refused.
    with pytest.raises(ValidationError):
        file_store.attach_owner(attached.url, "991")


def test_attach_owner_missing_file(file_store):
    with pytest.raises(FileStorageError):
        file_store.attach_owner(f"{BASE_URL}/contact-pending_resume_2025-07-16_a1b2c3d4.pdf", "5")


def test_path_for_rejects_traversal(file_store):
    with pytest.raises(ValidationError):
        file_store.path_for("../etc/passwd")
    with pytest.raises(ValidationError):
        file_store.path_for("")
    assert not file_store.exists("..hidden")


def test_cleanup_old_files(file_store):
    old = file_store.store_inbound_file("BQAC1", "1", "resume", b"old")
    new = file_store.store_inbound_file("BQAC2", "1", "diploma", b"new")
    os.utime(old.path, (0, 0))

    assert file_store.cleanup_old_files(days_old=30) == 1
    assert not old.path.exists()
    assert new.path.exists()
