"""
Location inheritance for positions.

A position that leaves location/city/country empty takes them from its parent
chain (first linked department, then that department's company). Explicit
values on the position are never replaced, and resolving an already resolved
position yields an empty patch.
"""
from dataclasses import dataclass
import logging
from typing import Any, Iterable, Mapping

from sqlalchemy.orm import Session

from ..models.department import Department
from ..models.position import Position
from ..utils.error_handlers import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

INHERITED_FIELDS = ("location", "city", "country")


@dataclass(frozen=True)
class InheritanceSummary:
    updated: int
    skipped: int
    total: int
    missing_parent: int


def _value(obj: Any, field: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(field)
    return getattr(obj, field, None)


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def compose_location(city: str | None, country: str | None) -> str | None:
    city = None if _is_empty(city) else city.strip()
    country = None if _is_empty(country) else country.strip()
    if city and country:
        return f"{city}, {country}"
    return city or country


def _inherited_location(parent_chain: list) -> str | None:
    # Nearest ancestor with an explicit location wins over a composed one.
    for ancestor in parent_chain:
        location = _value(ancestor, "location")
        if not _is_empty(location):
            return location
    for ancestor in parent_chain:
        composed = compose_location(_value(ancestor, "city"), _value(ancestor, "country"))
        if composed:
            return composed
    return None


def resolve_inherited_fields(entity: Any, parent_chain: Iterable[Any]) -> dict[str, str]:
    """
    Return the fields of `entity` that should be filled from `parent_chain`.

    `parent_chain` is ordered nearest ancestor first (department, then company).
    Entities and ancestors may be ORM objects or plain mappings.
    """
    chain = [a for a in (parent_chain or []) if a is not None]
    if not chain:
        return {}

    patch: dict[str, str] = {}
    for field in ("city", "country"):
        if not _is_empty(_value(entity, field)):
            continue
        for ancestor in chain:
            inherited = _value(ancestor, field)
            if not _is_empty(inherited):
                patch[field] = inherited
                break

    if _is_empty(_value(entity, "location")):
        location = _inherited_location(chain)
        if location:
            patch["location"] = location

    return patch


def parent_chain_for_position(db: Session, position: Position) -> list:
    link = position.department_links[0] if position.department_links else None
    if link is None:
        return []
    department = link.department or db.query(Department).filter(Department.id == link.department_id).first()
    if department is None:
        return []
    if department.company is None:
        return [department]
    return [department, department.company]


def apply_position_inheritance(db: Session, position: Position) -> dict[str, str]:
    """Apply the inheritance patch to `position` in place. Caller commits."""
    chain = parent_chain_for_position(db, position)
    if not chain:
        logger.warning("Position %s (%s) has no department/company to inherit from", position.id, position.title)
        return {}

    patch = resolve_inherited_fields(position, chain)
    for field, value in patch.items():
        setattr(position, field, value)
    return patch


def repair_entity(db: Session, entity_type: str, entity_id: int) -> dict[str, str]:
    entity_type = (entity_type or "").strip().lower()

    if entity_type == "position":
        position = db.query(Position).filter(Position.id == entity_id).first()
        if not position:
            raise NotFoundError("Position not found")
        patch = apply_position_inheritance(db, position)
        if patch:
            db.commit()
            db.refresh(position)
            logger.info("Position %s inherited %s", position.id, patch)
        return patch

    if entity_type == "department":
        # Departments currently inherit nothing from their company.
        department = db.query(Department).filter(Department.id == entity_id).first()
        if not department:
            raise NotFoundError("Department not found")
        return {}

    raise ValidationError(f"Unknown entity type: {entity_type}")


def repair_all_positions(db: Session) -> InheritanceSummary:
    positions = db.query(Position).order_by(Position.id).all()
    updated = 0
    missing_parent = 0

    for position in positions:
        if not parent_chain_for_position(db, position):
            missing_parent += 1
            logger.warning("Position %s (%s) has no associated company", position.id, position.title)
            continue
        if apply_position_inheritance(db, position):
            updated += 1

    if updated:
        db.commit()

    return InheritanceSummary(
        updated=updated,
        skipped=len(positions) - updated,
        total=len(positions),
        missing_parent=missing_parent,
    )
