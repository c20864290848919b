# backend/app/services/entities.py
"""
Read and update the CRM entities that research and enrichment target.

Entity CRUD belongs to the host application; this module only loads
snapshots and writes accepted field updates back.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from ..core.errors import EntityNotFound
from ..models.custom_field import CustomFieldDefinition
from ..models.organization import Organization
from ..models.person import Person
from ..models.research_settings import ResearchSettings
from ..models.rfp import Rfp
from .events import AutomationEvent, EventSink

logger = logging.getLogger(__name__)

ORGANIZATION_STANDARD_FIELDS = frozenset({
    "name",
    "domain",
    "website",
    "industry",
    "employee_count",
    "annual_revenue",
    "description",
    "logo_url",
    "linkedin_url",
    "phone",
    "address_street",
    "address_city",
    "address_state",
    "address_postal_code",
    "address_country",
})

PERSON_STANDARD_FIELDS = frozenset({
    "first_name",
    "last_name",
    "email",
    "phone",
    "mobile_phone",
    "job_title",
    "linkedin_url",
    "notes",
    "address_street",
    "address_city",
    "address_state",
    "address_postal_code",
    "address_country",
})

STANDARD_FIELDS = {
    "organization": ORGANIZATION_STANDARD_FIELDS,
    "person": PERSON_STANDARD_FIELDS,
}

ENTITY_MODELS = {
    "organization": Organization,
    "person": Person,
    "rfp": Rfp,
}


@dataclass
class ApplyOutcome:
    standard_fields: List[str] = field(default_factory=list)
    custom_fields: List[str] = field(default_factory=list)
    ignored_fields: List[str] = field(default_factory=list)

    @property
    def fields_updated(self) -> int:
        return len(self.standard_fields) + len(self.custom_fields)


def _jsonable(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def entity_snapshot(entity: Any) -> Dict[str, Any]:
    return {
        column.name: _jsonable(getattr(entity, column.name))
        for column in entity.__table__.columns
    }


def load_entity(db: Session, project_id: UUID, entity_type: str, entity_id: UUID):
    model = ENTITY_MODELS.get(entity_type)
    if model is None:
        raise EntityNotFound(entity_type, entity_id)
    entity = (
        db.query(model)
        .filter(
            model.id == entity_id,
            model.project_id == project_id,
            model.deleted_at.is_(None),
        )
        .first()
    )
    if entity is None:
        raise EntityNotFound(entity_type, entity_id)
    return entity


def organization_for(db: Session, organization_id: UUID | None) -> Optional[Organization]:
    if organization_id is None:
        return None
    return (
        db.query(Organization)
        .filter(Organization.id == organization_id, Organization.deleted_at.is_(None))
        .first()
    )


def custom_field_definitions(
    db: Session,
    project_id: UUID,
    entity_type: str,
) -> List[CustomFieldDefinition]:
    return (
        db.query(CustomFieldDefinition)
        .filter(
            CustomFieldDefinition.project_id == project_id,
            CustomFieldDefinition.entity_type == entity_type,
        )
        .order_by(CustomFieldDefinition.display_order.asc())
        .all()
    )


def research_settings_for(db: Session, project_id: UUID) -> Optional[ResearchSettings]:
    return db.query(ResearchSettings).filter(ResearchSettings.project_id == project_id).first()


def apply_field_updates(
    db: Session,
    entity: Any,
    entity_type: str,
    field_updates: Iterable[Mapping[str, Any]],
    event_sink: Optional[EventSink] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> ApplyOutcome:
    """
    Write accepted field updates to an entity.

    Standard fields outside the entity's allow-list are ignored, and so are
    custom fields the project has not declared for this entity type.
    Accepted custom fields are merged into the existing ``custom_fields``
    object.
    """
    allowed = STANDARD_FIELDS.get(entity_type, frozenset())
    declared = {d.name for d in custom_field_definitions(db, entity.project_id, entity_type)}
    outcome = ApplyOutcome()
    previous = entity_snapshot(entity)

    custom = dict(entity.custom_fields or {})
    custom_changed = False
    for update in field_updates:
        name = update.get("field_name")
        if not name:
            continue
        if update.get("is_custom"):
            if name not in declared:
                outcome.ignored_fields.append(name)
                continue
            custom[name] = update.get("value")
            custom_changed = True
            outcome.custom_fields.append(name)
        elif name in allowed:
            setattr(entity, name, update.get("value"))
            outcome.standard_fields.append(name)
        else:
            outcome.ignored_fields.append(name)

    if custom_changed:
        # Reassign so the JSON column is marked dirty
        entity.custom_fields = custom

    if outcome.fields_updated == 0:
        return outcome

    db.commit()
    db.refresh(entity)

    logger.info(
        "Applied %d field updates",
        outcome.fields_updated,
        extra={
            "entity_id": str(entity.id),
            "project_id": str(entity.project_id),
            "step": "apply_fields",
        },
    )

    if event_sink is not None:
        event_sink.emit(
            AutomationEvent(
                project_id=entity.project_id,
                trigger_type="entity.updated",
                entity_type=entity_type,
                entity_id=entity.id,
                data=entity_snapshot(entity),
                previous_data=previous,
                metadata=dict(metadata or {}),
            )
        )

    return outcome
