import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.bot import Bot
from ..models.candidate import Candidate
from ..models.position import Position
from ..services.intake import normalize_phone
from ..utils.roles import admin_only, staff_only
from ..utils.validation import validate_candidate_status, validate_integer_field, validate_string_field
from ..utils.error_handlers import get_error_message, handle_database_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/candidates", tags=["Candidates"])

_TEXT_FIELDS = ("telegram_username", "age", "city", "degree", "position_title")


class CandidateCreate(BaseModel):
    full_name: str
    phone: str | None = None
    telegram_username: str | None = None
    age: str | None = None
    city: str | None = None
    degree: str | None = None
    position_id: int | None = None
    position_title: str | None = None
    bot_id: int | None = None
    status: str | None = None


class CandidateUpdate(BaseModel):
    full_name: str | None = None
    phone: str | None = None
    telegram_username: str | None = None
    age: str | None = None
    city: str | None = None
    degree: str | None = None
    position_id: int | None = None
    position_title: str | None = None
    bot_id: int | None = None
    status: str | None = None


def _candidate_to_public(candidate: Candidate) -> dict:
    return {
        "id": candidate.id,
        "full_name": candidate.full_name,
        "phone": candidate.phone,
        "telegram_username": candidate.telegram_username,
        "age": candidate.age,
        "city": candidate.city,
        "degree": candidate.degree,
        "position_id": candidate.position_id,
        "position_title": candidate.position.title if candidate.position else candidate.position_title,
        "bot_id": candidate.bot_id,
        "status": candidate.status,
        "crm_contact_id": candidate.crm_contact_id,
        "crm_deal_id": candidate.crm_deal_id,
        "files": {
            "resume": candidate.resume_url,
            "diploma": candidate.diploma_url,
            "voice": candidate.voice_urls,
        },
        "answers": candidate.answers,
        "created_at": candidate.created_at.isoformat() if candidate.created_at else None,
        "updated_at": candidate.updated_at.isoformat() if candidate.updated_at else None,
    }


def _get_candidate_or_404(db: Session, candidate_id: int) -> Candidate:
    candidate_id = validate_integer_field(candidate_id, "Candidate ID", min_value=1)
    try:
        candidate = db.query(Candidate).filter(Candidate.id == candidate_id).first()
    except Exception as e:
        logger.error(f"Database error fetching candidate: {e}")
        raise handle_database_error(e, "fetching candidate")
    if not candidate:
        raise HTTPException(status_code=404, detail=get_error_message("candidate_not_found"))
    return candidate


def _check_references(db: Session, position_id: int | None, bot_id: int | None) -> None:
    if position_id is not None and not db.query(Position).filter(Position.id == position_id).first():
        raise HTTPException(status_code=404, detail=get_error_message("position_not_found"))
    if bot_id is not None and not db.query(Bot).filter(Bot.id == bot_id).first():
        raise HTTPException(status_code=404, detail="Bot not found")


@router.get("")
def list_candidates(
    status: str | None = Query(default=None, description="applied/screening/interview/matched/hired/rejected"),
    position_id: int | None = Query(default=None),
    q: str | None = Query(default=None, description="Search by name or phone"),
    db: Session = Depends(get_db),
    user=Depends(staff_only),
):
    query = db.query(Candidate)
    if status:
        query = query.filter(Candidate.status == validate_candidate_status(status))
    if position_id is not None:
        query = query.filter(Candidate.position_id == position_id)
    term = (q or "").strip()
    if term:
        like = f"%{term}%"
        query = query.filter(or_(Candidate.full_name.ilike(like), Candidate.phone.ilike(like)))

    candidates = query.order_by(Candidate.created_at.desc(), Candidate.id.desc()).all()
    return {"success": True, "candidates": [_candidate_to_public(c) for c in candidates]}


@router.get("/{candidate_id:int}")
def get_candidate(candidate_id: int, db: Session = Depends(get_db), user=Depends(staff_only)):
    candidate = _get_candidate_or_404(db, candidate_id)
    return {"success": True, "candidate": _candidate_to_public(candidate)}


@router.post("", status_code=201)
def create_candidate(payload: CandidateCreate, db: Session = Depends(get_db), user=Depends(admin_only)):
    full_name = validate_string_field(payload.full_name, "Full name", min_length=2, max_length=255)
    status = validate_candidate_status(payload.status)
    _check_references(db, payload.position_id, payload.bot_id)

    candidate = Candidate(
        full_name=full_name,
        phone=normalize_phone(payload.phone) or None,
        position_id=payload.position_id,
        bot_id=payload.bot_id,
        status=status,
    )
    for field in _TEXT_FIELDS:
        value = getattr(payload, field)
        setattr(candidate, field, (value or "").strip() or None)

    try:
        db.add(candidate)
        db.commit()
        db.refresh(candidate)
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, "creating candidate")

    return {"success": True, "candidate": _candidate_to_public(candidate)}


@router.patch("/{candidate_id:int}")
def update_candidate(
    candidate_id: int,
    payload: CandidateUpdate,
    db: Session = Depends(get_db),
    user=Depends(admin_only),
):
    candidate = _get_candidate_or_404(db, candidate_id)
    _check_references(db, payload.position_id, payload.bot_id)

    if payload.full_name is not None:
        candidate.full_name = validate_string_field(payload.full_name, "Full name", min_length=2, max_length=255)
    if payload.phone is not None:
        candidate.phone = normalize_phone(payload.phone) or None
    if payload.status is not None:
        candidate.status = validate_candidate_status(payload.status)
    if payload.position_id is not None:
        candidate.position_id = payload.position_id
    if payload.bot_id is not None:
        candidate.bot_id = payload.bot_id
    for field in _TEXT_FIELDS:
        value = getattr(payload, field)
        if value is not None:
            setattr(candidate, field, value.strip() or None)

    try:
        db.commit()
        db.refresh(candidate)
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, "updating candidate")

    return {"success": True, "candidate": _candidate_to_public(candidate)}


@router.delete("/{candidate_id:int}")
def delete_candidate(candidate_id: int, db: Session = Depends(get_db), user=Depends(admin_only)):
    candidate = _get_candidate_or_404(db, candidate_id)
    try:
        db.delete(candidate)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, "deleting candidate")
    return {"success": True, "message": "Candidate deleted"}
