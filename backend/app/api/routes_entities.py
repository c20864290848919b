from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..schemas.research import (
    DiscoverContactsRequest,
    DiscoverContactsResponse,
    DiscoveredContactOut,
    EntitySnapshotResponse,
    OrganizationRef,
)
from ..services.budget import BudgetGuard
from ..services.entities import custom_field_definitions, entity_snapshot, load_entity
from ..services.providers.base import ResearchProvider
from ..services.research import discover_contacts
from .deps import get_llm_budget, get_research_provider
from .routes_research import verify_api_key

router = APIRouter(tags=["entities"])


@router.get("/projects/{project_id}/organizations/{organization_id}", response_model=EntitySnapshotResponse)
def get_organization(
    project_id: UUID,
    organization_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    org = load_entity(db, project_id, "organization", organization_id)
    return EntitySnapshotResponse(
        entity_type="organization",
        id=org.id,
        name=org.name,
        snapshot=entity_snapshot(org),
        custom_field_names=[d.name for d in custom_field_definitions(db, project_id, "organization")],
    )


@router.get("/projects/{project_id}/people/{person_id}", response_model=EntitySnapshotResponse)
def get_person(
    project_id: UUID,
    person_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    person = load_entity(db, project_id, "person", person_id)
    name = " ".join(p for p in (person.first_name, person.last_name) if p) or None
    return EntitySnapshotResponse(
        entity_type="person",
        id=person.id,
        name=name,
        snapshot=entity_snapshot(person),
        custom_field_names=[d.name for d in custom_field_definitions(db, project_id, "person")],
    )


@router.post(
    "/projects/{project_id}/organizations/{organization_id}/discover-contacts",
    response_model=DiscoverContactsResponse,
)
def discover_organization_contacts(
    project_id: UUID,
    organization_id: UUID,
    payload: DiscoverContactsRequest,
    db: Session = Depends(get_db),
    provider: ResearchProvider = Depends(get_research_provider),
    budget: BudgetGuard = Depends(get_llm_budget),
    _: None = Depends(verify_api_key),
):
    # Suggestions only; a provider failure surfaces as 502
    discovery = discover_contacts(
        db,
        project_id=project_id,
        organization_id=organization_id,
        roles=payload.roles,
        max_results=payload.max_results,
        provider=provider,
        budget=budget,
    )
    return DiscoverContactsResponse(
        contacts=[DiscoveredContactOut.model_validate(c) for c in discovery.contacts],
        notes=discovery.notes,
        organization=OrganizationRef(id=discovery.organization.id, name=discovery.organization.name),
        roles_searched=discovery.roles_searched,
    )
