import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.company import Company
from ..models.department import Department
from ..utils.roles import admin_only, staff_only
from ..utils.validation import validate_integer_field, validate_string_field
from ..utils.error_handlers import get_error_message, handle_database_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/departments", tags=["Departments"])


class DepartmentCreate(BaseModel):
    name: str
    company_id: int
    description: str | None = None


class DepartmentUpdate(BaseModel):
    name: str | None = None
    company_id: int | None = None
    description: str | None = None


def _department_to_public(department: Department) -> dict:
    company = department.company
    return {
        "id": department.id,
        "name": department.name,
        "description": department.description,
        "company_id": department.company_id,
        "company_name": company.name if company else None,
        "position_ids": [link.position_id for link in department.position_links],
        "created_at": department.created_at.isoformat() if department.created_at else None,
    }


def _require_company(db: Session, company_id: int) -> Company:
    company_id = validate_integer_field(company_id, "Company ID", min_value=1)
    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        raise HTTPException(status_code=404, detail=get_error_message("company_not_found"))
    return company


def _get_department_or_404(db: Session, department_id: int) -> Department:
    department_id = validate_integer_field(department_id, "Department ID", min_value=1)
    try:
        department = db.query(Department).filter(Department.id == department_id).first()
    except Exception as e:
        logger.error(f"Database error fetching department: {e}")
        raise handle_database_error(e, "fetching department")
    if not department:
        raise HTTPException(status_code=404, detail=get_error_message("department_not_found"))
    return department


@router.get("")
def list_departments(
    company_id: int | None = Query(default=None, description="Only departments of this company"),
    db: Session = Depends(get_db),
    user=Depends(staff_only),
):
    q = db.query(Department)
    if company_id is not None:
        q = q.filter(Department.company_id == company_id)
    departments = q.order_by(Department.name.asc()).all()
    return {"success": True, "departments": [_department_to_public(d) for d in departments]}


@router.get("/{department_id:int}")
def get_department(department_id: int, db: Session = Depends(get_db), user=Depends(staff_only)):
    department = _get_department_or_404(db, department_id)
    return {"success": True, "department": _department_to_public(department)}


@router.post("", status_code=201)
def create_department(payload: DepartmentCreate, db: Session = Depends(get_db), user=Depends(admin_only)):
    name = validate_string_field(payload.name, "Department name", min_length=2, max_length=255)
    company = _require_company(db, payload.company_id)

    department = Department(
        name=name,
        company_id=company.id,
        description=(payload.description or "").strip() or None,
    )
    try:
        db.add(department)
        db.commit()
        db.refresh(department)
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, "creating department")

    return {"success": True, "department": _department_to_public(department)}


@router.patch("/{department_id:int}")
def update_department(
    department_id: int,
    payload: DepartmentUpdate,
    db: Session = Depends(get_db),
    user=Depends(admin_only),
):
    department = _get_department_or_404(db, department_id)

    if payload.name is not None:
        department.name = validate_string_field(payload.name, "Department name", min_length=2, max_length=255)
    if payload.company_id is not None:
        department.company_id = _require_company(db, payload.company_id).id
    if payload.description is not None:
        department.description = payload.description.strip() or None

    try:
        db.commit()
        db.refresh(department)
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, "updating department")

    return {"success": True, "department": _department_to_public(department)}


@router.delete("/{department_id:int}")
def delete_department(department_id: int, db: Session = Depends(get_db), user=Depends(admin_only)):
    department = _get_department_or_404(db, department_id)
    try:
        db.delete(department)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, "deleting department")
    return {"success": True, "message": "Department deleted"}
