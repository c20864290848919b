from uuid import UUID
import logging

from fastapi import APIRouter, Depends, HTTPException, Security
from fastapi.responses import JSONResponse
from fastapi.security.api_key import APIKeyHeader
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.db import get_db
from ..core.errors import EntityNotFound, JobConflict
from ..models.job_record import JobStatus
from ..schemas.research import (
    MAX_HISTORY_LIMIT,
    ApplyResultsRequest,
    ApplyResultsResponse,
    FieldMappingOut,
    Pagination,
    ResearchHistoryResponse,
    ResearchJobDetailResponse,
    ResearchJobOut,
    RfpResearchHistoryResponse,
    StartResearchRequest,
    StartResearchResponse,
    StartRfpResearchRequest,
    StartRfpResearchResponse,
)
from ..services.budget import BudgetGuard
from ..services.entities import custom_field_definitions, entity_snapshot, load_entity
from ..services.events import EventSink
from ..services.merge import resolve_research
from ..services.providers.base import ResearchProvider
from ..services.research import (
    TaskDispatcher,
    apply_research_results,
    latest_completed,
    research_store,
    start_entity_research,
    start_rfp_research,
)
from .deps import (
    current_user,
    event_sink,
    get_llm_budget,
    get_research_provider,
    get_task_dispatcher,
)

router = APIRouter(tags=["research"])

settings = get_settings()
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
logger = logging.getLogger(__name__)


def verify_api_key(api_key: str | None = Security(api_key_header)) -> None:
    """
    Simple header-based API key authentication.

    - In dev, if API_AUTH_KEY is not set, auth is skipped.
    - Otherwise, require X-API-Key == API_AUTH_KEY.
    """
    expected = settings.API_AUTH_KEY

    # In dev with no configured key, skip auth for convenience
    if settings.ENV == "dev" and not expected:
        return

    if not expected:
        # In non-dev environments, missing config is treated as misconfiguration
        raise HTTPException(status_code=401, detail="API key not configured")

    if api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid API key")


def clamp_limit(limit: int) -> int:
    return max(1, min(limit, MAX_HISTORY_LIMIT))


@router.post("/projects/{project_id}/research", response_model=StartResearchResponse)
def create_research_job(
    project_id: UUID,
    payload: StartResearchRequest,
    db: Session = Depends(get_db),
    provider: ResearchProvider = Depends(get_research_provider),
    budget: BudgetGuard = Depends(get_llm_budget),
    sink: EventSink = Depends(event_sink),
    user: str | None = Depends(current_user),
    _: None = Depends(verify_api_key),
):
    # Provider failures come back as a failed job, not an error response
    outcome = start_entity_research(
        db,
        project_id=project_id,
        entity_type=payload.entity_type,
        entity_id=payload.entity_id,
        provider=provider,
        budget=budget,
        include_custom_fields=payload.include_custom_fields,
        auto_apply=payload.auto_apply,
        merge_policy=payload.merge_policy,
        created_by=user,
        event_sink=sink,
    )
    return StartResearchResponse(
        job=ResearchJobOut.model_validate(outcome.job),
        fields_updated=outcome.fields_updated,
    )


@router.get("/projects/{project_id}/research", response_model=ResearchHistoryResponse)
def list_research_jobs(
    project_id: UUID,
    entity_type: str | None = None,
    entity_id: UUID | None = None,
    status: JobStatus | None = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    limit = clamp_limit(limit)
    offset = max(0, offset)
    jobs, total = research_store(db).list_jobs(
        project_id,
        entity_type=entity_type,
        entity_id=entity_id,
        status=status,
        limit=limit,
        offset=offset,
    )
    return ResearchHistoryResponse(
        jobs=[ResearchJobOut.model_validate(j) for j in jobs],
        pagination=Pagination(total=total, limit=limit, offset=offset),
    )


@router.get("/projects/{project_id}/research/{job_id}", response_model=ResearchJobDetailResponse)
def get_research_job(
    project_id: UUID,
    job_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    job = research_store(db).get(job_id, project_id=project_id)

    mappings = []
    entity_type = job.entity_type.value
    if job.status == JobStatus.COMPLETED and job.result and entity_type != "rfp":
        try:
            entity = load_entity(db, project_id, entity_type, job.entity_id)
        except EntityNotFound:
            entity = None
        if entity is not None:
            declared = [d.name for d in custom_field_definitions(db, project_id, entity_type)]
            mappings = resolve_research(job.result, entity_type, entity_snapshot(entity), declared)

    return ResearchJobDetailResponse(
        job=ResearchJobOut.model_validate(job),
        field_mappings=[FieldMappingOut.model_validate(m) for m in mappings],
    )


@router.post(
    "/projects/{project_id}/research/{job_id}/apply",
    response_model=ApplyResultsResponse,
)
def apply_research_job(
    project_id: UUID,
    job_id: UUID,
    payload: ApplyResultsRequest,
    db: Session = Depends(get_db),
    sink: EventSink = Depends(event_sink),
    _: None = Depends(verify_api_key),
):
    if payload.job_id is not None and payload.job_id != job_id:
        raise HTTPException(status_code=400, detail="job_id does not match the URL")

    outcome = apply_research_results(
        db,
        project_id=project_id,
        job_id=job_id,
        field_updates=[u.model_dump() for u in payload.field_updates],
        event_sink=sink,
    )
    return ApplyResultsResponse(
        fields_updated=outcome.fields_updated,
        standard_fields=outcome.standard_fields,
        custom_fields=outcome.custom_fields,
    )


@router.post(
    "/projects/{project_id}/rfps/{rfp_id}/research",
    response_model=StartRfpResearchResponse,
    status_code=202,
)
def create_rfp_research_job(
    project_id: UUID,
    rfp_id: UUID,
    payload: StartRfpResearchRequest | None = None,
    db: Session = Depends(get_db),
    budget: BudgetGuard = Depends(get_llm_budget),
    dispatcher: TaskDispatcher = Depends(get_task_dispatcher),
    user: str | None = Depends(current_user),
    _: None = Depends(verify_api_key),
):
    try:
        job = start_rfp_research(
            db,
            project_id=project_id,
            rfp_id=rfp_id,
            budget=budget,
            dispatcher=dispatcher,
            additional_context=payload.additional_context if payload else None,
            created_by=user,
        )
    except JobConflict as e:
        return JSONResponse(
            status_code=409,
            content={
                "error": "Research is already running for this RFP",
                "jobId": str(e.existing_job_id) if e.existing_job_id else None,
            },
        )
    return StartRfpResearchResponse(job=ResearchJobOut.model_validate(job))


@router.get(
    "/projects/{project_id}/rfps/{rfp_id}/research",
    response_model=RfpResearchHistoryResponse,
)
def list_rfp_research_jobs(
    project_id: UUID,
    rfp_id: UUID,
    limit: int = 20,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    load_entity(db, project_id, "rfp", rfp_id)
    jobs, _total = research_store(db).list_jobs(
        project_id,
        entity_type="rfp",
        entity_id=rfp_id,
        limit=clamp_limit(limit),
    )
    latest = latest_completed(jobs)
    return RfpResearchHistoryResponse(
        results=[ResearchJobOut.model_validate(j) for j in jobs],
        latest=ResearchJobOut.model_validate(latest) if latest else None,
    )
