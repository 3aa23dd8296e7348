import logging
from typing import Any, Iterable

from sqlalchemy.orm import Session

from ..models.company import Company
from ..models.department import Department
from ..models.position import Position
from ..utils.error_handlers import NotFoundError, ValidationError
from .inheritance import apply_position_inheritance, parent_chain_for_position, resolve_inherited_fields

logger = logging.getLogger(__name__)

# Fields an entity needs before it can be used in a campaign / published.
REQUIRED_FIELDS: dict[str, list[dict[str, Any]]] = {
    "company": [
        {"field": "name", "label": "Company Name", "type": "text"},
        {"field": "email", "label": "Email Address", "type": "email"},
        {"field": "phone", "label": "Phone Number", "type": "tel"},
        {"field": "city", "label": "City", "type": "text"},
        {"field": "country", "label": "Country", "type": "text"},
        {"field": "description", "label": "Description", "type": "textarea"},
    ],
    "department": [
        {"field": "name", "label": "Department Name", "type": "text"},
        {"field": "description", "label": "Description", "type": "textarea"},
    ],
    "position": [
        {"field": "title", "label": "Position Title", "type": "text"},
        {"field": "description", "label": "Job Description", "type": "textarea"},
        {"field": "salary_range", "label": "Salary Range", "type": "text"},
        {
            "field": "employment_type",
            "label": "Employment Type",
            "type": "select",
            "options": ["Full-time", "Part-time", "Contract", "Temporary", "Internship"],
        },
        {"field": "location", "label": "Location", "type": "text"},
        {"field": "qualifications", "label": "Required Qualifications", "type": "textarea"},
        {"field": "responsibilities", "label": "Key Responsibilities", "type": "textarea"},
    ],
}

_MODELS = {"company": Company, "department": Department, "position": Position}


def get_required_fields_config(entity_type: str) -> list[dict[str, Any]]:
    return REQUIRED_FIELDS.get(entity_type, [])


def _get(entity: Any, name: str) -> Any:
    if isinstance(entity, dict):
        return entity.get(name)
    return getattr(entity, name, None)


def validate_entity_completeness(entity_type: str, entity: Any, parent_chain: Iterable[Any] = ()) -> dict:
    """
    Completeness of `entity` against REQUIRED_FIELDS, counting values a position
    would inherit from `parent_chain` as present.
    """
    required = get_required_fields_config(entity_type)
    inherited = resolve_inherited_fields(entity, parent_chain) if entity_type == "position" else {}

    missing: list[dict] = []
    present: list[dict] = []
    for spec in required:
        value = inherited.get(spec["field"], _get(entity, spec["field"]))
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(spec)
        else:
            present.append(spec)

    total = len(required)
    return {
        "is_complete": not missing,
        "completion_percentage": round(len(present) / total * 100) if total else 100,
        "total_fields": total,
        "present_fields": len(present),
        "missing_fields": len(missing),
        "missing_fields_list": missing,
        "present_fields_list": present,
        "inherited_fields": inherited,
    }


def _load(db: Session, entity_type: str, entity_id: int):
    model = _MODELS.get(entity_type)
    if model is None:
        raise ValidationError(f"Unknown entity type: {entity_type}")
    entity = db.query(model).filter(model.id == entity_id).first()
    if entity is None:
        raise NotFoundError(f"{entity_type.capitalize()} not found")
    return entity


def get_entity_validation(db: Session, entity_type: str, entity_id: int) -> dict:
    entity = _load(db, entity_type, entity_id)
    chain = parent_chain_for_position(db, entity) if entity_type == "position" else []
    return validate_entity_completeness(entity_type, entity, chain)


def update_entity_fields(db: Session, entity_type: str, entity_id: int, data: dict[str, Any]) -> tuple[Any, dict]:
    """
    Fill in fields reported missing by validation. Empty values are ignored so a
    partially filled form never blanks existing data.
    """
    entity = _load(db, entity_type, entity_id)
    allowed = {spec["field"] for spec in get_required_fields_config(entity_type)}

    clean = {
        k: v
        for k, v in (data or {}).items()
        if k in allowed and v is not None and not (isinstance(v, str) and not v.strip())
    }
    unknown = set((data or {}).keys()) - allowed
    if unknown:
        logger.warning("Ignoring non-required fields for %s %s: %s", entity_type, entity_id, sorted(unknown))

    for name, value in clean.items():
        setattr(entity, name, value.strip() if isinstance(value, str) else value)
    if entity_type == "position":
        apply_position_inheritance(db, entity)

    db.commit()
    db.refresh(entity)
    return entity, get_entity_validation(db, entity_type, entity_id)


def validate_campaign_entities(
    db: Session,
    *,
    companies: Iterable[int] = (),
    departments: Iterable[int] = (),
    positions: Iterable[int] = (),
) -> dict:
    incomplete: dict[str, list[dict]] = {"companies": [], "departments": [], "positions": []}
    for key, entity_type, ids in (
        ("companies", "company", companies),
        ("departments", "department", departments),
        ("positions", "position", positions),
    ):
        for entity_id in ids:
            try:
                validation = get_entity_validation(db, entity_type, int(entity_id))
            except NotFoundError:
                logger.warning("Campaign references missing %s %s", entity_type, entity_id)
                continue
            if not validation["is_complete"]:
                incomplete[key].append({"id": int(entity_id), "validation": validation})

    return {
        "has_incomplete_entities": any(incomplete.values()),
        "entities": incomplete,
    }
