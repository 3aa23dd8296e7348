import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.department import Department, DepartmentPosition
from ..models.position import Position
from ..services.inheritance import apply_position_inheritance, repair_all_positions, repair_entity
from ..utils.roles import admin_only, staff_only
from ..utils.validation import validate_integer_field, validate_string_field
from ..utils.error_handlers import AppError, get_error_message, handle_database_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/positions", tags=["Positions"])

_TEXT_FIELDS = (
    "description",
    "location",
    "city",
    "country",
    "salary_range",
    "employment_type",
    "qualifications",
    "responsibilities",
)


class PositionCreate(BaseModel):
    title: str
    department_ids: list[int] = Field(default_factory=list)
    description: str | None = None
    location: str | None = None
    city: str | None = None
    country: str | None = None
    salary_range: str | None = None
    employment_type: str | None = None
    qualifications: str | None = None
    responsibilities: str | None = None


class PositionUpdate(BaseModel):
    title: str | None = None
    department_ids: list[int] | None = None
    description: str | None = None
    location: str | None = None
    city: str | None = None
    country: str | None = None
    salary_range: str | None = None
    employment_type: str | None = None
    qualifications: str | None = None
    responsibilities: str | None = None


def _position_to_public(position: Position) -> dict:
    departments = position.departments
    company = departments[0].company if departments else None
    return {
        "id": position.id,
        "title": position.title,
        "description": position.description,
        "location": position.location,
        "city": position.city,
        "country": position.country,
        "salary_range": position.salary_range,
        "employment_type": position.employment_type,
        "qualifications": position.qualifications,
        "responsibilities": position.responsibilities,
        "department_ids": [d.id for d in departments],
        "departments": [{"id": d.id, "name": d.name} for d in departments],
        "company_id": company.id if company else None,
        "company_name": company.name if company else None,
        "created_at": position.created_at.isoformat() if position.created_at else None,
    }


def _get_position_or_404(db: Session, position_id: int) -> Position:
    position_id = validate_integer_field(position_id, "Position ID", min_value=1)
    try:
        position = db.query(Position).filter(Position.id == position_id).first()
    except Exception as e:
        logger.error(f"Database error fetching position: {e}")
        raise handle_database_error(e, "fetching position")
    if not position:
        raise HTTPException(status_code=404, detail=get_error_message("position_not_found"))
    return position


def _load_departments(db: Session, department_ids: list[int]) -> list[Department]:
    ids = sorted({validate_integer_field(i, "Department ID", min_value=1) for i in department_ids})
    if not ids:
        return []
    departments = db.query(Department).filter(Department.id.in_(ids)).order_by(Department.id).all()
    found = {d.id for d in departments}
    missing = [i for i in ids if i not in found]
    if missing:
        raise HTTPException(status_code=404, detail=f"{get_error_message('department_not_found')} (ids: {missing})")
    return departments


def _set_departments(db: Session, position: Position, departments: list[Department]) -> None:
    wanted = {d.id for d in departments}
    for link in list(position.department_links):
        if link.department_id not in wanted:
            position.department_links.remove(link)
    existing = {link.department_id for link in position.department_links}
    for department in departments:
        if department.id not in existing:
            position.department_links.append(DepartmentPosition(department=department))
    db.flush()
    # Reload so the links come back ordered by department id.
    db.expire(position, ["department_links"])


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


@router.get("")
def list_positions(
    department_id: int | None = Query(default=None, description="Only positions linked to this department"),
    db: Session = Depends(get_db),
    user=Depends(staff_only),
):
    q = db.query(Position)
    if department_id is not None:
        q = q.join(DepartmentPosition).filter(DepartmentPosition.department_id == department_id)
    positions = q.order_by(Position.title.asc()).all()
    return {"success": True, "positions": [_position_to_public(p) for p in positions]}


@router.get("/{position_id:int}")
def get_position(position_id: int, db: Session = Depends(get_db), user=Depends(staff_only)):
    position = _get_position_or_404(db, position_id)
    return {"success": True, "position": _position_to_public(position)}


@router.post("", status_code=201)
def create_position(payload: PositionCreate, db: Session = Depends(get_db), user=Depends(admin_only)):
    title = validate_string_field(payload.title, "Position title", min_length=2, max_length=255)
    departments = _load_departments(db, payload.department_ids)

    position = Position(title=title)
    for field in _TEXT_FIELDS:
        setattr(position, field, _clean(getattr(payload, field)))

    try:
        db.add(position)
        _set_departments(db, position, departments)
        inherited = apply_position_inheritance(db, position) if departments else {}
        db.commit()
        db.refresh(position)
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, "creating position")

    return {"success": True, "position": _position_to_public(position), "inherited_fields": inherited}


@router.patch("/{position_id:int}")
def update_position(
    position_id: int,
    payload: PositionUpdate,
    db: Session = Depends(get_db),
    user=Depends(admin_only),
):
    position = _get_position_or_404(db, position_id)

    if payload.title is not None:
        position.title = validate_string_field(payload.title, "Position title", min_length=2, max_length=255)
    for field in _TEXT_FIELDS:
        value = getattr(payload, field)
        if value is not None:
            setattr(position, field, _clean(value))

    try:
        if payload.department_ids is not None:
            _set_departments(db, position, _load_departments(db, payload.department_ids))
        inherited = apply_position_inheritance(db, position) if position.department_links else {}
        db.commit()
        db.refresh(position)
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, "updating position")

    return {"success": True, "position": _position_to_public(position), "inherited_fields": inherited}


@router.delete("/{position_id:int}")
def delete_position(position_id: int, db: Session = Depends(get_db), user=Depends(admin_only)):
    position = _get_position_or_404(db, position_id)
    try:
        for candidate in position.candidates:
            candidate.position_id = None
        db.delete(position)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, "deleting position")
    return {"success": True, "message": "Position deleted"}


@router.post("/{position_id:int}/inherit")
def inherit_position_fields(position_id: int, db: Session = Depends(get_db), user=Depends(admin_only)):
    try:
        patch = repair_entity(db, "position", position_id)
    except AppError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"success": True, "updated": bool(patch), "inherited_fields": patch}


@router.post("/inherit")
def inherit_all_positions(db: Session = Depends(get_db), user=Depends(admin_only)):
    summary = repair_all_positions(db)
    logger.info(
        "Inheritance sweep: %s updated, %s skipped, %s without parent",
        summary.updated,
        summary.skipped,
        summary.missing_parent,
    )
    return {
        "success": True,
        "updated": summary.updated,
        "skipped": summary.skipped,
        "total": summary.total,
        "missing_parent": summary.missing_parent,
    }
