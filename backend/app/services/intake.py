"""
Bot application intake: payload -> CRM contact -> stored files -> CRM deal.

Each application is an IntakeSession moving through

    draft -> owner_created -> files_attached      (or -> failed)

Files are fetched and stored only after the CRM contact exists, so every stored
filename carries the real contact id and no placeholder URL is ever written.

A failed session can be posted again; files already stored for the same contact
are reused. A session still in draft/owner_created (and updated within
INTAKE_LOCK_S) belongs to the request running it, so duplicates get ConflictError.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import enum
import hashlib
import json
import logging
import re
from typing import Any

from pydantic import BaseModel, field_validator
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .. import config
from ..models.bot import Bot
from ..models.candidate import Candidate
from ..models.intake_session import IntakeSession
from ..models.position import Position
from ..utils.error_handlers import AppError, ConflictError, FileStorageError, get_error_message
from .bitrix_client import (
    ANSWER_FIELDS,
    CONTACT_FIELDS,
    DEAL_CATEGORY_ID,
    DEAL_STATUS_ID,
    DEAL_UTM_SOURCE,
    DIPLOMA_FIELD,
    RESUME_FIELD,
    VOICE_FIELDS,
    BitrixClient,
)
from .file_storage import DIPLOMA, RESUME, FileStore, filename_from_url, owner_from_filename, voice_kind
from .telegram_client import FileFetched, TelegramFileSource

logger = logging.getLogger(__name__)

_INVISIBLE_RE = re.compile(r"[\uFEFF\u200B\u200C\u200D\u2060]")
_LINK_RE = re.compile(r"<a[^>]*>(.*?)</a>", re.IGNORECASE | re.DOTALL)


class IntakeState(str, enum.Enum):
    DRAFT = "draft"
    OWNER_CREATED = "owner_created"
    FILES_ATTACHED = "files_attached"
    FAILED = "failed"


def strip_invisible(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    return _INVISIBLE_RE.sub("", value).strip()


def extract_link_text(value: str | None) -> str:
    """Bots sometimes send the username as an HTML link; keep the inner text."""
    if not value:
        return ""
    m = _LINK_RE.search(value)
    return (m.group(1) if m else value).strip()


def normalize_phone(phone: str | None) -> str:
    """Normalize to E.164 with the Uzbek +998 country code."""
    if not phone:
        return ""
    digits = re.sub(r"\D", "", phone)
    if not digits:
        return ""
    if digits.startswith("998"):
        return f"+{digits}"
    return f"+998{digits}"


class IntakePayload(BaseModel):
    """Flat JSON posted by the bot builder; field names are fixed by the bot flow."""
    full_name_uzbek: str | None = None
    phone_number_uzbek: str | None = None
    age_uzbek: str | None = None
    city_uzbek: str | None = None
    degree: str | None = None
    position_uz: str | None = None
    username: str | None = None
    resume: str | None = None
    diploma: str | None = None
    phase2_q_1: str | None = None
    phase2_q_2: str | None = None
    phase2_q_3: str | None = None
    session_id: str | None = None
    bot_id: int | None = None

    @field_validator(
        "full_name_uzbek",
        "phone_number_uzbek",
        "age_uzbek",
        "city_uzbek",
        "degree",
        "position_uz",
        "username",
        "resume",
        "diploma",
        "phase2_q_1",
        "phase2_q_2",
        "phase2_q_3",
        "session_id",
        mode="before",
    )
    @classmethod
    def _clean_text(cls, v):
        if v is None:
            return None
        if isinstance(v, (int, float)):
            v = str(v)
        v = strip_invisible(v)
        return v or None

    @property
    def answers(self) -> list[str | None]:
        return [self.phase2_q_1, self.phase2_q_2, self.phase2_q_3]

    def session_key(self) -> str:
        if self.session_id:
            return self.session_id
        raw = json.dumps(self.model_dump(exclude={"session_id"}), sort_keys=True, ensure_ascii=False)
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass
class IntakeResult:
    session_key: str
    state: IntakeState
    contact_id: str | None = None
    deal_id: str | None = None
    candidate_id: int | None = None
    file_urls: dict[str, str] = field(default_factory=dict)  # kind -> url
    skipped_files: dict[str, str] = field(default_factory=dict)  # kind -> reason

    def as_dict(self) -> dict:
        return {
            "session_key": self.session_key,
            "state": self.state.value,
            "contact_id": self.contact_id,
            "deal_id": self.deal_id,
            "candidate_id": self.candidate_id,
            "file_urls": dict(self.file_urls),
            "skipped_files": dict(self.skipped_files),
        }


def build_contact_fields(payload: IntakePayload) -> dict[str, Any]:
    """Contact fields without any file references."""
    phone = normalize_phone(payload.phone_number_uzbek)
    fields: dict[str, Any] = {
        "NAME": payload.full_name_uzbek or "",
        CONTACT_FIELDS["position"]: payload.position_uz or "",
        CONTACT_FIELDS["city"]: payload.city_uzbek or "",
        CONTACT_FIELDS["degree"]: payload.degree or "",
        CONTACT_FIELDS["username"]: extract_link_text(payload.username),
        CONTACT_FIELDS["age"]: payload.age_uzbek or "",
    }
    if phone:
        fields["PHONE"] = [{"VALUE": phone, "VALUE_TYPE": "MOBILE"}]
        fields[CONTACT_FIELDS["phone_backup"]] = phone
    if payload.age_uzbek:
        fields["COMMENTS"] = f"The Age is {payload.age_uzbek}"
    return fields


def build_deal_fields(payload: IntakePayload, contact_id: str) -> dict[str, Any]:
    return {
        "TITLE": f"HR BOT - {payload.full_name_uzbek or ''}".strip(),
        "CATEGORY_ID": DEAL_CATEGORY_ID,
        "STATUS_ID": DEAL_STATUS_ID,
        "UTM_SOURCE": DEAL_UTM_SOURCE,
        "CONTACT_ID": contact_id,
        CONTACT_FIELDS["username"]: extract_link_text(payload.username),
    }


class IntakePipeline:
    def __init__(self, db: Session, crm: BitrixClient, files: TelegramFileSource, store: FileStore):
        self.db = db
        self.crm = crm
        self.files = files
        self.store = store

    async def process(self, payload: IntakePayload) -> IntakeResult:
        key = payload.session_key()
        session = self._claim(key, payload)
        if session.state == IntakeState.FILES_ATTACHED.value:
            logger.info("Intake %s already processed; returning stored result", key)
            return self._stored_result(session)

        # Files kept from an earlier, failed attempt of this session.
        previous = self._stored_result(session)
        result = IntakeResult(session_key=key, state=IntakeState.DRAFT)
        try:
            contact_id = await self._ensure_contact(payload)
            if previous.contact_id and previous.contact_id != contact_id:
                self._discard_unreferenced(previous, ())
            self._advance(session, IntakeState.OWNER_CREATED, contact_id=contact_id)
            result.state = IntakeState.OWNER_CREATED
            result.contact_id = contact_id

            file_fields = await self._attach_files(payload, contact_id, result, session, previous)
            if file_fields:
                await self.crm.update_contact(contact_id, file_fields)

            deal_id = await self._ensure_deal(payload, contact_id)
            result.deal_id = deal_id

            candidate = self._upsert_candidate(payload, result)
            result.candidate_id = candidate.id
            self._advance(
                session,
                IntakeState.FILES_ATTACHED,
                deal_id=result.deal_id,
                candidate_id=candidate.id,
                result_json=json.dumps(
                    {**result.as_dict(), "state": IntakeState.FILES_ATTACHED.value}, ensure_ascii=False
                ),
            )
            result.state = IntakeState.FILES_ATTACHED
        except AppError as e:
            logger.error("Intake %s failed in state %s: %s", key, result.state.value, e.message)
            self._fail(session, result, previous, e.message)
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Intake %s failed in state %s: database error %s", key, result.state.value, e)
            self._fail(session, result, previous, "database error")
            raise

        self._discard_unreferenced(previous, set(result.file_urls.values()))
        logger.info(
            "Intake %s done contact=%s deal=%s files=%d skipped=%d",
            key,
            result.contact_id,
            result.deal_id,
            len(result.file_urls),
            len(result.skipped_files),
        )
        return result

    def _claim(self, key: str, payload: IntakePayload) -> IntakeSession:
        """
        Take ownership of the session row for this request, or raise ConflictError when
        another request is still working on it.
        """
        session = self.db.query(IntakeSession).filter(IntakeSession.session_key == key).first()
        if session is None:
            session = IntakeSession(session_key=key, payload_json=payload.model_dump_json(), state=IntakeState.DRAFT.value)
            self.db.add(session)
            try:
                self.db.commit()
            except IntegrityError:
                # Another request inserted the same session first.
                self.db.rollback()
                logger.warning("Intake %s started concurrently; rejecting duplicate", key)
                raise ConflictError(get_error_message("intake_in_progress"), details={"session_key": key})
            return session

        if session.state == IntakeState.FILES_ATTACHED.value:
            return session
        if session.state != IntakeState.FAILED.value and not self._is_stale(session):
            logger.warning("Intake %s is still %s; rejecting duplicate", key, session.state)
            raise ConflictError(get_error_message("intake_in_progress"), details={"session_key": key})

        # Compare-and-set so two retries of a failed session cannot both proceed.
        claimed = (
            self.db.query(IntakeSession)
            .filter(IntakeSession.id == session.id, IntakeSession.state == session.state)
            .update({"state": IntakeState.DRAFT.value, "error": None}, synchronize_session=False)
        )
        self.db.commit()
        if not claimed:
            raise ConflictError(get_error_message("intake_in_progress"), details={"session_key": key})
        self.db.refresh(session)
        return session

    @staticmethod
    def _is_stale(session: IntakeSession) -> bool:
        updated = session.updated_at or session.created_at
        if updated is None:
            return True
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) - updated > timedelta(seconds=config.INTAKE_LOCK_S)

    def _advance(self, session: IntakeSession, state: IntakeState, **values: Any) -> None:
        session.state = state.value
        for name, value in values.items():
            setattr(session, name, value)
        self.db.commit()

    def _fail(self, session: IntakeSession, result: IntakeResult, previous: IntakeResult, error: str) -> None:
        self._advance(session, IntakeState.FAILED, error=error, result_json=self._progress_json(result, previous))

    def _checkpoint(self, session: IntakeSession, result: IntakeResult, previous: IntakeResult) -> None:
        session.result_json = self._progress_json(result, previous)
        self.db.commit()

    @staticmethod
    def _progress_json(result: IntakeResult, previous: IntakeResult) -> str:
        # Every file on disk for this session stays listed so a retry can reuse it.
        data = result.as_dict()
        data["file_urls"] = {**previous.file_urls, **result.file_urls}
        return json.dumps(data, ensure_ascii=False)

    def _discard_unreferenced(self, previous: IntakeResult, keep_urls) -> None:
        """Remove files from an earlier attempt that the current result does not reference."""
        for kind, url in list(previous.file_urls.items()):
            if url in keep_urls:
                continue
            self._discard_file(url)
            previous.file_urls.pop(kind)

    def _discard_file(self, url: str) -> None:
        try:
            if self.store.discard(filename_from_url(url)):
                logger.info("Dropped %s left by an earlier attempt", url)
        except AppError as e:
            logger.warning("Could not drop %s: %s", url, e.message)

    def _stored_result(self, session: IntakeSession) -> IntakeResult:
        try:
            data = json.loads(session.result_json or "{}")
        except ValueError:
            logger.warning("Intake %s has unreadable result_json; ignoring it", session.session_key)
            data = {}
        return IntakeResult(
            session_key=session.session_key,
            state=IntakeState(session.state),
            contact_id=session.contact_id,
            deal_id=session.deal_id,
            candidate_id=session.candidate_id,
            file_urls=data.get("file_urls") or {},
            skipped_files=data.get("skipped_files") or {},
        )

    async def _ensure_contact(self, payload: IntakePayload) -> str:
        fields = build_contact_fields(payload)
        phone = normalize_phone(payload.phone_number_uzbek)
        existing = await self.crm.find_contact_by_phone(phone)
        if existing:
            logger.info("Existing contact %s found for %s; updating", existing, phone)
            await self.crm.update_contact(existing, fields)
            return existing
        contact_id = await self.crm.create_contact(fields)
        logger.info("Created contact %s", contact_id)
        return contact_id

    async def _ensure_deal(self, payload: IntakePayload, contact_id: str) -> str:
        fields = build_deal_fields(payload, contact_id)
        existing = await self.crm.find_deal_by_contact(contact_id)
        if existing:
            await self.crm.update_deal(existing, fields)
            return existing
        return await self.crm.create_deal(fields)

    async def _store(
        self,
        raw_file_id: str,
        contact_id: str,
        kind: str,
        result: IntakeResult,
        session: IntakeSession,
        previous: IntakeResult,
    ) -> str | None:
        earlier = previous.file_urls.get(kind)
        if earlier and owner_from_filename(filename_from_url(earlier)) == str(contact_id):
            if self.store.exists(filename_from_url(earlier)):
                logger.info("Reusing %s for contact %s from an earlier attempt", kind, contact_id)
                result.file_urls[kind] = earlier
                return earlier

        fetched = await self.files.fetch_file(raw_file_id)
        if not isinstance(fetched, FileFetched):
            logger.warning("Skipping %s for contact %s: %s", kind, contact_id, fetched.reason)
            result.skipped_files[kind] = fetched.reason
            return None
        try:
            stored = self.store.store_inbound_file(raw_file_id, contact_id, kind, fetched.data, ext=fetched.extension)
        except FileStorageError as e:
            logger.warning("Skipping %s for contact %s: %s", kind, contact_id, e.message)
            result.skipped_files[kind] = "storage_failed"
            return None
        result.file_urls[kind] = stored.url
        if earlier and earlier != stored.url:
            # Replaced by the new copy; nothing will reference the old one.
            self._discard_file(earlier)
            previous.file_urls.pop(kind, None)
        self._checkpoint(session, result, previous)
        return stored.url

    async def _attach_files(
        self,
        payload: IntakePayload,
        contact_id: str,
        result: IntakeResult,
        session: IntakeSession,
        previous: IntakeResult,
    ) -> dict[str, str]:
        fields: dict[str, str] = {}
        comments: list[str] = []

        for kind, crm_field, raw in ((RESUME, RESUME_FIELD, payload.resume), (DIPLOMA, DIPLOMA_FIELD, payload.diploma)):
            if not raw:
                continue
            url = await self._store(raw, contact_id, kind, result, session, previous)
            if url:
                fields[crm_field] = url
                comments.append(f"{kind.capitalize()}: {url}")

        for number, raw in enumerate(payload.answers, start=1):
            if not raw:
                continue
            kind = voice_kind(number)
            fetched_url = await self._store(raw, contact_id, kind, result, session, previous)
            if fetched_url:
                fields[VOICE_FIELDS[number - 1]] = fetched_url
                fields[ANSWER_FIELDS[number - 1]] = f"Voice answer: {fetched_url}"
            elif result.skipped_files.get(kind) == "not_a_file":
                # Typed answer rather than a voice message.
                result.skipped_files.pop(kind)
                fields[ANSWER_FIELDS[number - 1]] = raw

        if comments:
            if payload.age_uzbek:
                comments.append(f"The Age is {payload.age_uzbek}")
            fields["COMMENTS"] = "\n".join(comments)
        return fields

    def _resolve_position_id(self, title: str | None) -> int | None:
        if not title:
            return None
        position = (
            self.db.query(Position)
            .filter(func.lower(Position.title) == title.strip().lower())
            .order_by(Position.id)
            .first()
        )
        return position.id if position else None

    def _upsert_candidate(self, payload: IntakePayload, result: IntakeResult) -> Candidate:
        phone = normalize_phone(payload.phone_number_uzbek) or None
        candidate = (
            self.db.query(Candidate).filter(Candidate.crm_contact_id == result.contact_id).first()
            if result.contact_id
            else None
        )
        if candidate is None and phone:
            candidate = self.db.query(Candidate).filter(Candidate.phone == phone).first()
        if candidate is None:
            candidate = Candidate(full_name=payload.full_name_uzbek or "Unknown", status="applied")
            self.db.add(candidate)

        candidate.full_name = payload.full_name_uzbek or candidate.full_name
        candidate.phone = phone or candidate.phone
        candidate.telegram_username = extract_link_text(payload.username) or candidate.telegram_username
        candidate.age = payload.age_uzbek or candidate.age
        candidate.city = payload.city_uzbek or candidate.city
        candidate.degree = payload.degree or candidate.degree
        candidate.position_title = payload.position_uz or candidate.position_title
        candidate.position_id = self._resolve_position_id(payload.position_uz) or candidate.position_id
        if payload.bot_id and self.db.query(Bot).filter(Bot.id == payload.bot_id).first():
            candidate.bot_id = payload.bot_id
        candidate.crm_contact_id = result.contact_id
        candidate.crm_deal_id = result.deal_id

        # Only successfully stored files replace existing references.
        candidate.resume_url = result.file_urls.get(RESUME) or candidate.resume_url
        candidate.diploma_url = result.file_urls.get(DIPLOMA) or candidate.diploma_url
        voice = list(candidate.voice_urls)
        for number in range(1, len(payload.answers) + 1):
            url = result.file_urls.get(voice_kind(number))
            if not url:
                continue
            while len(voice) < number:
                voice.append("")
            voice[number - 1] = url
        candidate.voice_urls = voice

        answers = dict(candidate.answers)
        for number, raw in enumerate(payload.answers, start=1):
            if raw and voice_kind(number) not in result.file_urls and voice_kind(number) not in result.skipped_files:
                answers[f"q{number}"] = raw
        candidate.answers = answers

        self.db.commit()
        self.db.refresh(candidate)
        return candidate
