# backend/app/services/research.py
"""
AI research executors.

Organization and person research run synchronously inside the request:
the job is persisted as ``running``, the provider is called, and the
terminal state is written before the response goes out. RFP research is
slower and runs as a Celery task; the request only creates the job and
dispatches it. Contact discovery shares the provider and budget but
stores no job.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.db import SessionLocal
from ..core.errors import BudgetExhausted, InvalidJobState, JobAlreadyTerminal, ValidationFailed
from ..models.job_record import JobStatus
from ..models.research_job import ResearchJob
from ..schemas.canonical import (
    RESEARCH_RESULT_MODELS,
    ContactDiscoveryResult,
    DiscoveredContact,
    RfpResearch,
    dump_result,
)
from .budget import BudgetGuard, llm_budget_guard
from .entities import (
    ApplyOutcome,
    apply_field_updates,
    custom_field_definitions,
    entity_snapshot,
    load_entity,
    organization_for,
    research_settings_for,
)
from .events import EventSink
from .job_store import JobStore
from .merge import MergePolicy, resolve_research, select_applicable
from .providers import get_research_provider
from .providers.base import AdapterError, AdapterErrorKind, ResearchProvider
from .providers.prompts import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    SYSTEM_PROMPT,
    ai_extractable_fields,
    build_contact_discovery_prompt,
    build_organization_research_prompt,
    build_person_research_prompt,
    build_rfp_research_prompt,
)

logger = logging.getLogger(__name__)
settings = get_settings()

RFP_TASK_NAME = "app.services.research.run_rfp_research_job"

TaskDispatcher = Callable[[UUID], None]


def research_store(db: Session) -> JobStore:
    return JobStore(db, ResearchJob)


@dataclass
class ResearchOutcome:
    job: ResearchJob
    fields_updated: int = 0


def _run_completion(
    store: JobStore,
    job: ResearchJob,
    provider: ResearchProvider,
    budget: BudgetGuard,
    result_model: type,
    *,
    model: str,
    temperature: float,
    max_tokens: int,
    system_prompt: Optional[str],
) -> Optional[Any]:
    """
    Call the provider for an already-running job and persist its terminal state.

    Returns the validated result, or None when the job was failed.
    """
    try:
        completion = provider.complete_json(
            job.prompt,
            result_model,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            system_prompt=system_prompt,
        )
    except AdapterError as e:
        budget.record(e.tokens_used, project_id=job.project_id, meta={"job_id": str(job.id)})
        logger.warning(
            "Research provider call failed: %s",
            e.kind.value,
            extra={"job_id": str(job.id), "provider": provider.name, "step": "complete_json"},
        )
        store.mark_failed(job, e.message, e.kind.value, tokens_used=e.tokens_used)
        return None
    except Exception as e:
        logger.exception(
            "Unexpected error during research",
            extra={"job_id": str(job.id), "provider": provider.name, "step": "complete_json"},
        )
        store.mark_failed(job, str(e), AdapterErrorKind.UNKNOWN.value)
        return None

    budget.record(
        completion.tokens_used,
        project_id=job.project_id,
        meta={"job_id": str(job.id), "model": completion.model_used},
    )
    store.mark_completed(
        job,
        dump_result(completion.result),
        model_used=completion.model_used,
        tokens_used=completion.tokens_used,
    )
    return completion.result


def start_entity_research(
    db: Session,
    *,
    project_id: UUID,
    entity_type: str,
    entity_id: UUID,
    provider: ResearchProvider,
    budget: BudgetGuard,
    include_custom_fields: bool = True,
    auto_apply: bool = False,
    merge_policy: MergePolicy = MergePolicy.FILL_EMPTY,
    created_by: str | None = None,
    event_sink: Optional[EventSink] = None,
) -> ResearchOutcome:
    """
    Research one organization or person synchronously.

    Provider failures never raise: they are written to the job, which is
    returned either way. Conflicts, missing entities and an exhausted
    budget do raise, before any job is created.
    """
    if entity_type not in ("organization", "person"):
        raise ValidationFailed(f"Synchronous research is not available for {entity_type}")

    entity = load_entity(db, project_id, entity_type, entity_id)
    snapshot = entity_snapshot(entity)
    definitions = (
        ai_extractable_fields(custom_field_definitions(db, project_id, entity_type))
        if include_custom_fields
        else []
    )
    research_settings = research_settings_for(db, project_id)
    template = research_settings.user_prompt_template if research_settings else None

    if entity_type == "organization":
        prompt = build_organization_research_prompt(snapshot, definitions, template)
    else:
        org = organization_for(db, entity.organization_id)
        prompt = build_person_research_prompt(
            snapshot,
            organization_name=org.name if org else None,
            custom_fields=definitions,
            user_prompt_template=template,
        )

    model = (research_settings and research_settings.model_id) or settings.LLM_MODEL
    temperature = settings.LLM_TEMPERATURE
    max_tokens = settings.LLM_MAX_TOKENS
    system_prompt = SYSTEM_PROMPT
    if research_settings is not None:
        if research_settings.temperature is not None:
            temperature = research_settings.temperature
        if research_settings.max_tokens:
            max_tokens = research_settings.max_tokens
        if research_settings.system_prompt:
            system_prompt = research_settings.system_prompt

    budget.ensure_available()

    store = research_store(db)
    job = store.create(
        project_id=project_id,
        entity_type=entity_type,
        entity_id=entity_id,
        prompt=prompt,
        model_used=model,
        created_by=created_by,
    )
    logger.info(
        "Starting %s research",
        entity_type,
        extra={"job_id": str(job.id), "entity_id": str(entity_id), "step": "start"},
    )

    result = _run_completion(
        store,
        job,
        provider,
        budget,
        RESEARCH_RESULT_MODELS[entity_type],
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        system_prompt=system_prompt,
    )

    fields_updated = 0
    if result is not None and auto_apply:
        mappings = resolve_research(result, entity_type, snapshot, [d.name for d in definitions])
        thresholds = {
            d.name: (
                d.ai_confidence_threshold
                if d.ai_confidence_threshold is not None
                else DEFAULT_CONFIDENCE_THRESHOLD
            )
            for d in definitions
        }
        selected = select_applicable(mappings, merge_policy, field_thresholds=thresholds)
        if selected:
            outcome = _apply_to_entity(
                db, store, job, entity, [m.as_update() for m in selected], event_sink
            )
            fields_updated = outcome.fields_updated

    return ResearchOutcome(job=job, fields_updated=fields_updated)


def _apply_to_entity(
    db: Session,
    store: JobStore,
    job: ResearchJob,
    entity: Any,
    field_updates: List[Dict[str, Any]],
    event_sink: Optional[EventSink],
) -> ApplyOutcome:
    outcome = apply_field_updates(
        db,
        entity,
        job.entity_type.value,
        field_updates,
        event_sink=event_sink,
        metadata={"source": "research", "job_id": str(job.id)},
    )
    if outcome.fields_updated:
        store.record_applied_fields(job, outcome.standard_fields + outcome.custom_fields)
    return outcome


def apply_research_results(
    db: Session,
    *,
    project_id: UUID,
    job_id: UUID,
    field_updates: List[Dict[str, Any]],
    event_sink: Optional[EventSink] = None,
) -> ApplyOutcome:
    store = research_store(db)
    job = store.get(job_id, project_id=project_id)
    if job.status != JobStatus.COMPLETED:
        raise InvalidJobState("Can only apply results from completed research jobs")
    if job.entity_type.value not in ("organization", "person"):
        raise InvalidJobState("RFP research results cannot be applied to entity fields")

    entity = load_entity(db, project_id, job.entity_type.value, job.entity_id)
    return _apply_to_entity(db, store, job, entity, field_updates, event_sink)


# ---------------------------------------------------------------------------
# Contact discovery
# ---------------------------------------------------------------------------


@dataclass
class ContactDiscovery:
    organization: Any
    contacts: List[DiscoveredContact]
    notes: Optional[str]
    roles_searched: List[str]


def _with_split_name(contact: DiscoveredContact, index: int) -> DiscoveredContact:
    first, last = contact.first_name, contact.last_name
    parts = contact.name.split()
    if parts and not first:
        first = parts[0]
    if len(parts) > 1 and not last:
        last = " ".join(parts[1:])
    return contact.model_copy(
        update={"id": contact.id or f"discovered-{index}", "first_name": first, "last_name": last}
    )


def discover_contacts(
    db: Session,
    *,
    project_id: UUID,
    organization_id: UUID,
    roles: List[str],
    provider: ResearchProvider,
    budget: BudgetGuard,
    max_results: int = 10,
) -> ContactDiscovery:
    """
    Ask the research provider who holds the given roles at an organization.

    Nothing is persisted; the caller decides which suggestions become
    people. Provider failures propagate as AdapterError.
    """
    organization = load_entity(db, project_id, "organization", organization_id)
    roles = [r.strip() for r in roles if r and r.strip()]
    if not roles:
        raise ValidationFailed("At least one role is required")
    max_results = max(1, min(max_results, settings.CONTACT_DISCOVERY_MAX_RESULTS))

    research_settings = research_settings_for(db, project_id)
    model = (research_settings and research_settings.model_id) or settings.LLM_MODEL
    prompt = build_contact_discovery_prompt(entity_snapshot(organization), roles, max_results)

    budget.ensure_available()
    meta = {"organization_id": str(organization_id), "step": "discover_contacts"}
    try:
        completion = provider.complete_json(
            prompt,
            ContactDiscoveryResult,
            model=model,
            temperature=settings.CONTACT_DISCOVERY_TEMPERATURE,
            max_tokens=settings.CONTACT_DISCOVERY_MAX_TOKENS,
            system_prompt=SYSTEM_PROMPT,
        )
    except AdapterError as e:
        budget.record(e.tokens_used, project_id=project_id, meta=meta)
        logger.warning(
            "Contact discovery failed: %s",
            e.kind.value,
            extra={"entity_id": str(organization_id), "provider": provider.name, "step": "discover_contacts"},
        )
        raise

    budget.record(
        completion.tokens_used,
        project_id=project_id,
        meta={**meta, "model": completion.model_used},
    )
    result = completion.result
    contacts = [_with_split_name(c, i) for i, c in enumerate(result.contacts[:max_results])]
    logger.info(
        "Discovered %d contacts",
        len(contacts),
        extra={"entity_id": str(organization_id), "provider": provider.name, "step": "discover_contacts"},
    )
    return ContactDiscovery(
        organization=organization,
        contacts=contacts,
        notes=result.notes,
        roles_searched=roles,
    )


# ---------------------------------------------------------------------------
# RFP research (background)
# ---------------------------------------------------------------------------


def celery_dispatcher(job_id: UUID) -> None:
    celery_app.send_task(RFP_TASK_NAME, args=[str(job_id)], queue="research")


def start_rfp_research(
    db: Session,
    *,
    project_id: UUID,
    rfp_id: UUID,
    budget: BudgetGuard,
    dispatcher: TaskDispatcher = celery_dispatcher,
    additional_context: str | None = None,
    created_by: str | None = None,
) -> ResearchJob:
    rfp = load_entity(db, project_id, "rfp", rfp_id)
    org = organization_for(db, rfp.organization_id)
    prompt = build_rfp_research_prompt(
        entity_snapshot(rfp),
        entity_snapshot(org) if org else None,
        additional_context,
    )

    budget.ensure_available()

    store = research_store(db)
    job = store.create(
        project_id=project_id,
        entity_type="rfp",
        entity_id=rfp_id,
        prompt=prompt,
        model_used=settings.RFP_RESEARCH_MODEL,
        created_by=created_by,
    )

    try:
        dispatcher(job.id)
    except Exception as e:
        logger.exception(
            "Failed to dispatch RFP research task",
            extra={"job_id": str(job.id), "step": "dispatch"},
        )
        store.mark_failed(job, f"Failed to start research: {e}", "dispatch_failed")
        return job

    logger.info(
        "RFP research dispatched",
        extra={"job_id": str(job.id), "entity_id": str(rfp_id), "step": "dispatched"},
    )
    return job


def execute_rfp_research(
    db: Session,
    job_id: UUID,
    provider: ResearchProvider,
    budget: BudgetGuard,
) -> ResearchJob:
    store = research_store(db)
    job = store.get(job_id)
    if job.is_terminal:
        logger.info(
            "RFP research job already finished; skipping",
            extra={"job_id": str(job.id), "step": "skip"},
        )
        return job

    try:
        budget.ensure_available()
    except BudgetExhausted as e:
        store.mark_failed(job, e.message, e.code)
        return job

    _run_completion(
        store,
        job,
        provider,
        budget,
        RfpResearch,
        model=job.model_used or settings.RFP_RESEARCH_MODEL,
        temperature=settings.RFP_RESEARCH_TEMPERATURE,
        max_tokens=settings.RFP_RESEARCH_MAX_TOKENS,
        system_prompt=None,
    )
    return job


@celery_app.task(name=RFP_TASK_NAME, bind=True, queue="research")
def run_rfp_research_job(self, job_id: str):
    db: Session = SessionLocal()
    try:
        execute_rfp_research(
            db,
            UUID(job_id),
            provider=get_research_provider(),
            budget=llm_budget_guard(db),
        )
    except Exception as e:
        db.rollback()
        job = db.query(ResearchJob).filter(ResearchJob.id == UUID(job_id)).first()
        if job and not job.is_terminal:
            try:
                research_store(db).mark_failed(job, str(e), AdapterErrorKind.UNKNOWN.value)
            except JobAlreadyTerminal:
                pass
        logger.exception(
            "RFP research job failed",
            extra={"job_id": job_id, "step": "failed"},
        )
        raise
    finally:
        db.close()


def latest_completed(jobs: List[ResearchJob]) -> Optional[ResearchJob]:
    for job in jobs:
        if job.status == JobStatus.COMPLETED:
            return job
    return None
