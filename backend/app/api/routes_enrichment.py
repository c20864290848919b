from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.db import get_db
from ..core.errors import EntityNotFound
from ..models.job_record import JobStatus
from ..schemas.canonical import ContactEnrichmentResult, load_result
from ..schemas.enrichment import (
    ApplyEnrichmentRequest,
    ApplyEnrichmentResponse,
    EnrichmentHistoryResponse,
    EnrichmentJobDetailResponse,
    EnrichmentJobOut,
    StartEnrichmentRequest,
    StartEnrichmentResponse,
)
from ..schemas.research import FieldMappingOut, Pagination
from ..services.budget import BudgetGuard
from ..services.enrichment import (
    apply_enrichment_results,
    enrichment_store,
    poll_enrichment_job,
    start_enrichment,
)
from ..services.entities import entity_snapshot, load_entity
from ..services.events import EventSink
from ..services.merge import resolve_enrichment
from ..services.providers.base import EnrichmentProvider
from .deps import current_user, event_sink, get_enrichment_budget, get_enrichment_provider
from .routes_research import clamp_limit, verify_api_key

router = APIRouter(tags=["enrichment"])

settings = get_settings()


@router.post("/projects/{project_id}/enrich", response_model=StartEnrichmentResponse)
def create_enrichment_jobs(
    project_id: UUID,
    payload: StartEnrichmentRequest,
    db: Session = Depends(get_db),
    provider: EnrichmentProvider = Depends(get_enrichment_provider),
    budget: BudgetGuard = Depends(get_enrichment_budget),
    user: str | None = Depends(current_user),
    _: None = Depends(verify_api_key),
):
    outcome = start_enrichment(
        db,
        project_id=project_id,
        person_ids=payload.targets,
        provider=provider,
        budget=budget,
        created_by=user,
    )
    return StartEnrichmentResponse(
        jobs=[EnrichmentJobOut.model_validate(j) for j in outcome.jobs],
        external_job_id=outcome.external_job_id,
        skipped=outcome.skipped,
    )


@router.get("/projects/{project_id}/enrich", response_model=EnrichmentHistoryResponse)
def list_enrichment_jobs(
    project_id: UUID,
    person_id: UUID | None = None,
    status: JobStatus | None = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    limit = clamp_limit(limit)
    offset = max(0, offset)
    jobs, total = enrichment_store(db).list_jobs(
        project_id,
        entity_id=person_id,
        status=status,
        limit=limit,
        offset=offset,
    )
    return EnrichmentHistoryResponse(
        jobs=[EnrichmentJobOut.model_validate(j) for j in jobs],
        pagination=Pagination(total=total, limit=limit, offset=offset),
    )


@router.get("/projects/{project_id}/enrich/{job_id}", response_model=EnrichmentJobDetailResponse)
def get_enrichment_job(
    project_id: UUID,
    job_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    job = enrichment_store(db).get(job_id, project_id=project_id)
    response = EnrichmentJobDetailResponse(job=EnrichmentJobOut.model_validate(job))
    if job.status != JobStatus.COMPLETED or not job.result:
        return response

    result = load_result(ContactEnrichmentResult, job.result)
    score = result.confidence_score
    if score is not None and score < settings.ENRICHMENT_MIN_CONFIDENCE:
        response.below_min_confidence = True
        return response

    try:
        person = load_entity(db, project_id, "person", job.entity_id)
    except EntityNotFound:
        return response
    response.field_mappings = [
        FieldMappingOut.model_validate(m)
        for m in resolve_enrichment(result, entity_snapshot(person))
    ]
    return response


@router.post("/projects/{project_id}/enrich/{job_id}/poll", response_model=EnrichmentJobOut)
def poll_enrichment(
    project_id: UUID,
    job_id: UUID,
    db: Session = Depends(get_db),
    provider: EnrichmentProvider = Depends(get_enrichment_provider),
    budget: BudgetGuard = Depends(get_enrichment_budget),
    _: None = Depends(verify_api_key),
):
    job = poll_enrichment_job(
        db,
        project_id=project_id,
        job_id=job_id,
        provider=provider,
        budget=budget,
    )
    return EnrichmentJobOut.model_validate(job)


@router.post("/projects/{project_id}/enrich/apply", response_model=ApplyEnrichmentResponse)
def apply_enrichment(
    project_id: UUID,
    payload: ApplyEnrichmentRequest,
    db: Session = Depends(get_db),
    sink: EventSink = Depends(event_sink),
    _: None = Depends(verify_api_key),
):
    outcome = apply_enrichment_results(
        db,
        project_id=project_id,
        job_id=payload.job_id,
        field_updates=[u.model_dump() for u in payload.field_updates],
        event_sink=sink,
    )
    return ApplyEnrichmentResponse(
        fields_updated=outcome.fields_updated,
        standard_fields=outcome.standard_fields,
        custom_fields=outcome.custom_fields,
    )
