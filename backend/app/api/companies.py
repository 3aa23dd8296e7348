import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.company import Company
from ..models.department import Department
from ..services.inheritance import apply_position_inheritance
from ..utils.roles import admin_only, staff_only
from ..utils.validation import validate_email, validate_integer_field, validate_string_field
from ..utils.error_handlers import get_error_message, handle_database_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/companies", tags=["Companies"])

_OPTIONAL_FIELDS = ("description", "phone", "address", "city", "country", "logo_url")


class CompanyCreate(BaseModel):
    name: str
    description: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    country: str | None = None
    logo_url: str | None = None


class CompanyUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    country: str | None = None
    logo_url: str | None = None


def _company_to_public(company: Company) -> dict:
    return {
        "id": company.id,
        "name": company.name,
        "description": company.description,
        "email": company.email,
        "phone": company.phone,
        "address": company.address,
        "city": company.city,
        "country": company.country,
        "logo_url": company.logo_url,
        "department_count": len(company.departments or []),
        "created_at": company.created_at.isoformat() if company.created_at else None,
    }


def _get_company_or_404(db: Session, company_id: int) -> Company:
    company_id = validate_integer_field(company_id, "Company ID", min_value=1)
    try:
        company = db.query(Company).filter(Company.id == company_id).first()
    except Exception as e:
        logger.error(f"Database error fetching company: {e}")
        raise handle_database_error(e, "fetching company")
    if not company:
        raise HTTPException(status_code=404, detail=get_error_message("company_not_found"))
    return company


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


@router.get("")
def list_companies(db: Session = Depends(get_db), user=Depends(staff_only)):
    companies = db.query(Company).order_by(Company.name.asc()).all()
    return {"success": True, "companies": [_company_to_public(c) for c in companies]}


@router.get("/{company_id:int}")
def get_company(company_id: int, db: Session = Depends(get_db), user=Depends(staff_only)):
    company = _get_company_or_404(db, company_id)
    return {"success": True, "company": _company_to_public(company)}


@router.post("", status_code=201)
def create_company(payload: CompanyCreate, db: Session = Depends(get_db), user=Depends(admin_only)):
    name = validate_string_field(payload.name, "Company name", min_length=2, max_length=255)
    email = validate_email(payload.email) if payload.email else None

    company = Company(name=name, email=email)
    for field in _OPTIONAL_FIELDS:
        setattr(company, field, _clean(getattr(payload, field)))

    try:
        db.add(company)
        db.commit()
        db.refresh(company)
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, "creating company")

    logger.info("Company %s created by user %s", company.id, user.get("sub"))
    return {"success": True, "company": _company_to_public(company)}


@router.patch("/{company_id:int}")
def update_company(
    company_id: int,
    payload: CompanyUpdate,
    db: Session = Depends(get_db),
    user=Depends(admin_only),
):
    company = _get_company_or_404(db, company_id)

    if payload.name is not None:
        company.name = validate_string_field(payload.name, "Company name", min_length=2, max_length=255)
    if payload.email is not None:
        company.email = validate_email(payload.email) if payload.email.strip() else None
    for field in _OPTIONAL_FIELDS:
        value = getattr(payload, field)
        if value is not None:
            setattr(company, field, _clean(value))

    # City/country feed position locations; refresh positions that still lack them.
    location_changed = payload.city is not None or payload.country is not None
    try:
        if location_changed:
            db.flush()
            departments = db.query(Department).filter(Department.company_id == company.id).all()
            for department in departments:
                for link in department.position_links:
                    if link.position is not None:
                        apply_position_inheritance(db, link.position)
        db.commit()
        db.refresh(company)
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, "updating company")

    return {"success": True, "company": _company_to_public(company)}


@router.delete("/{company_id:int}")
def delete_company(company_id: int, db: Session = Depends(get_db), user=Depends(admin_only)):
    company = _get_company_or_404(db, company_id)
    try:
        db.delete(company)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, "deleting company")
    return {"success": True, "message": "Company deleted"}
