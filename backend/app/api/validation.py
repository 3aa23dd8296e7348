import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.entity_validation import (
    get_entity_validation,
    get_required_fields_config,
    update_entity_fields,
    validate_campaign_entities,
)
from ..utils.roles import admin_only, staff_only
from ..utils.validation import validate_entity_type, validate_integer_field
from ..utils.error_handlers import AppError, handle_database_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Validation"])


class CampaignValidationRequest(BaseModel):
    companies: list[int] = Field(default_factory=list)
    departments: list[int] = Field(default_factory=list)
    positions: list[int] = Field(default_factory=list)


@router.get("/{entity_type}/{entity_id:int}/validation")
def get_validation(entity_type: str, entity_id: int, db: Session = Depends(get_db), user=Depends(staff_only)):
    entity_type = validate_entity_type(entity_type)
    entity_id = validate_integer_field(entity_id, "Entity ID", min_value=1)
    try:
        validation = get_entity_validation(db, entity_type, entity_id)
    except AppError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return {
        "success": True,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "validation": validation,
        "required_fields_config": get_required_fields_config(entity_type),
    }


@router.patch("/{entity_type}/{entity_id:int}/fields")
def patch_fields(
    entity_type: str,
    entity_id: int,
    payload: dict[str, Any],
    db: Session = Depends(get_db),
    user=Depends(admin_only),
):
    entity_type = validate_entity_type(entity_type)
    entity_id = validate_integer_field(entity_id, "Entity ID", min_value=1)
    try:
        _, validation = update_entity_fields(db, entity_type, entity_id, payload)
    except AppError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, f"updating {entity_type} fields")

    return {
        "success": True,
        "message": f"{entity_type.capitalize()} updated successfully",
        "validation": validation,
    }


@router.post("/validation/campaign")
def validate_campaign(
    payload: CampaignValidationRequest,
    db: Session = Depends(get_db),
    user=Depends(staff_only),
):
    result = validate_campaign_entities(
        db,
        companies=payload.companies,
        departments=payload.departments,
        positions=payload.positions,
    )
    return {"success": True, **result}
