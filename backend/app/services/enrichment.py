# backend/app/services/enrichment.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
import math
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.db import SessionLocal
from ..core.errors import (
    EntityNotFound,
    InvalidJobState,
    JobConflict,
    JobNotFound,
    ResearchError,
)
from ..models.enrichment_job import EnrichmentJob
from ..models.job_record import JobStatus
from ..models.person import Person
from ..schemas.canonical import (
    ContactEnrichmentResult,
    EnrichmentBatch,
    EnrichmentCorrelation,
    dump_result,
)
from .budget import BudgetGuard, enrichment_budget_guard
from .entities import ApplyOutcome, apply_field_updates, load_entity, organization_for
from .events import EventSink
from .job_store import JobStore
from .providers import get_enrichment_provider
from .providers.base import AdapterError, AdapterErrorKind, ContactHint, EnrichmentProvider

logger = logging.getLogger(__name__)
settings = get_settings()


def enrichment_store(db: Session) -> JobStore:
    # A person waiting on the provider (pending) also blocks a second request
    return JobStore(db, EnrichmentJob, conflict_statuses=(JobStatus.PENDING, JobStatus.RUNNING))


def webhook_url() -> str:
    return f"{settings.APP_URL.rstrip('/')}{settings.API_PREFIX}/webhooks/fullenrich"


def _domain_from(value: str | None) -> Optional[str]:
    if not value:
        return None
    d = value.strip().lower()
    if "://" in d:
        d = d.split("://", 1)[1]
    d = d.split("/", 1)[0]
    if d.startswith("www."):
        d = d[4:]
    return d or None


def contact_hint_for(db: Session, person: Person) -> ContactHint:
    org = organization_for(db, person.organization_id)
    return ContactHint(
        first_name=person.first_name,
        last_name=person.last_name,
        email=person.email,
        linkedin_url=person.linkedin_url,
        company_name=org.name if org else None,
        domain=(org.domain or _domain_from(org.website)) if org else None,
    )


@dataclass
class StartEnrichmentOutcome:
    jobs: List[EnrichmentJob] = field(default_factory=list)
    external_job_id: Optional[str] = None
    skipped: List[Dict[str, Any]] = field(default_factory=list)


def start_enrichment(
    db: Session,
    *,
    project_id: UUID,
    person_ids: List[UUID],
    provider: EnrichmentProvider,
    budget: BudgetGuard,
    created_by: str | None = None,
) -> StartEnrichmentOutcome:
    """
    Create one pending job per person and submit them as a single provider batch.

    People that do not exist or already have an open job are skipped. With a
    single target, that skip is raised instead.
    """
    budget.ensure_available()

    store = enrichment_store(db)
    outcome = StartEnrichmentOutcome()
    contacts = []

    for person_id in person_ids:
        try:
            person = load_entity(db, project_id, "person", person_id)
            hint = contact_hint_for(db, person)
            job = store.create(
                project_id=project_id,
                entity_type="person",
                entity_id=person_id,
                status=JobStatus.PENDING,
                request_payload=dict(hint),
                created_by=created_by,
            )
        except (EntityNotFound, JobConflict) as e:
            if len(person_ids) == 1:
                raise
            skipped: Dict[str, Any] = {"person_id": str(person_id), "error": e.message}
            if isinstance(e, JobConflict) and e.existing_job_id:
                skipped["job_id"] = str(e.existing_job_id)
            outcome.skipped.append(skipped)
            continue

        outcome.jobs.append(job)
        contacts.append((hint, EnrichmentCorrelation(person_id=person_id, job_id=job.id)))

    if not outcome.jobs:
        return outcome

    try:
        external_job_id = provider.submit(
            f"enrichment-{project_id}-{datetime.utcnow():%Y%m%d%H%M%S}",
            contacts,
            webhook_url=webhook_url(),
        )
    except AdapterError as e:
        logger.warning(
            "Enrichment submission failed: %s",
            e.kind.value,
            extra={"project_id": str(project_id), "provider": provider.name, "step": "submit"},
        )
        for job in outcome.jobs:
            store.mark_failed(job, e.message, e.kind.value)
        return outcome

    for job in outcome.jobs:
        store.mark_running(job, external_job_id=external_job_id)

    outcome.external_job_id = external_job_id
    logger.info(
        "Enrichment batch submitted with %d contacts",
        len(outcome.jobs),
        extra={"project_id": str(project_id), "provider": provider.name, "step": "submitted"},
    )
    return outcome


@dataclass
class DeliveryResult:
    processed: int
    status: str
    credits_used: Optional[int] = None


def _match_records(
    jobs: List[EnrichmentJob],
    records: List[ContactEnrichmentResult],
) -> Dict[UUID, ContactEnrichmentResult]:
    """
    Pair provider records with jobs through their correlation payload.

    Array position is only trusted when exactly one job meets exactly one
    uncorrelated record.
    """
    by_job: Dict[UUID, ContactEnrichmentResult] = {}
    by_person: Dict[UUID, ContactEnrichmentResult] = {}
    uncorrelated: List[ContactEnrichmentResult] = []
    for record in records:
        if record.correlation is None:
            uncorrelated.append(record)
            continue
        by_job[record.correlation.job_id] = record
        by_person.setdefault(record.correlation.person_id, record)

    matched: Dict[UUID, ContactEnrichmentResult] = {}
    for job in jobs:
        record = by_job.get(job.id) or by_person.get(job.entity_id)
        if record is not None:
            matched[job.id] = record

    if not matched and len(jobs) == 1 and len(records) == 1 and uncorrelated:
        matched[jobs[0].id] = uncorrelated[0]
    return matched


def handle_delivery(db: Session, batch: EnrichmentBatch, budget: BudgetGuard) -> DeliveryResult:
    """Apply one provider status report (webhook or poll) to the jobs it covers."""
    store = enrichment_store(db)
    jobs = store.find_by_external_id(batch.external_job_id)
    if not jobs:
        raise JobNotFound(batch.external_job_id)

    open_jobs = [j for j in jobs if not j.is_terminal]

    if batch.status in ("pending", "running"):
        return DeliveryResult(processed=0, status="processing")

    if batch.status == "failed":
        for job in open_jobs:
            store.mark_failed(job, batch.error, batch.error_kind)
        logger.warning(
            "Enrichment batch failed: %s",
            batch.error_kind,
            extra={"provider": "fullenrich", "step": "delivery"},
        )
        return DeliveryResult(processed=len(open_jobs), status="failed")

    if not open_jobs:
        # Redelivery of a batch we already settled
        return DeliveryResult(processed=0, status="completed", credits_used=batch.credits_used)

    budget.record(
        batch.credits_used,
        project_id=open_jobs[0].project_id,
        meta={"external_job_id": batch.external_job_id},
    )
    credits_per_job = math.ceil(batch.credits_used / len(jobs)) if batch.credits_used else 1

    matched = _match_records(open_jobs, batch.results)
    now = datetime.utcnow()
    for job in open_jobs:
        record = matched.get(job.id)
        person = db.query(Person).filter(Person.id == job.entity_id).first()

        if record is not None and record.error:
            store.mark_failed(job, record.error, AdapterErrorKind.UNKNOWN.value)
            if person is not None:
                person.enrichment_status = "failed"
            continue

        result = record or ContactEnrichmentResult()
        store.mark_completed(job, dump_result(result), credits_used=credits_per_job)
        if person is not None:
            person.enrichment_status = "enriched" if record is not None else "no_match"
            person.enriched_at = now

    db.commit()
    logger.info(
        "Enrichment batch delivered to %d jobs",
        len(open_jobs),
        extra={"provider": "fullenrich", "step": "delivery"},
    )
    return DeliveryResult(processed=len(open_jobs), status="completed", credits_used=batch.credits_used)


def poll_enrichment_job(
    db: Session,
    *,
    project_id: UUID,
    job_id: UUID,
    provider: EnrichmentProvider,
    budget: BudgetGuard,
) -> EnrichmentJob:
    store = enrichment_store(db)
    job = store.get(job_id, project_id=project_id)
    if job.is_terminal or not job.external_job_id:
        return job

    batch = provider.fetch(job.external_job_id)
    handle_delivery(db, batch, budget)
    db.refresh(job)
    return job


def apply_enrichment_results(
    db: Session,
    *,
    project_id: UUID,
    job_id: UUID,
    field_updates: List[Dict[str, Any]],
    event_sink: Optional[EventSink] = None,
) -> ApplyOutcome:
    store = enrichment_store(db)
    job = store.get(job_id, project_id=project_id)
    if job.status != JobStatus.COMPLETED:
        raise InvalidJobState("Can only apply results from completed enrichment jobs")

    person = load_entity(db, project_id, "person", job.entity_id)
    outcome = apply_field_updates(
        db,
        person,
        "person",
        field_updates,
        event_sink=event_sink,
        metadata={"source": "enrichment", "job_id": str(job.id)},
    )
    if outcome.fields_updated:
        store.record_applied_fields(job, outcome.standard_fields + outcome.custom_fields)
    return outcome


@celery_app.task(name="app.services.enrichment.poll_pending_enrichment_jobs")
def poll_pending_enrichment_jobs() -> int:
    """
    Periodic fallback for lost webhooks: poll every open provider batch.
    """
    db: Session = SessionLocal()
    try:
        external_ids = [
            row[0]
            for row in db.query(EnrichmentJob.external_job_id)
            .filter(
                EnrichmentJob.status == JobStatus.RUNNING,
                EnrichmentJob.external_job_id.isnot(None),
            )
            .distinct()
            .all()
        ]
        if not external_ids:
            return 0

        provider = get_enrichment_provider()
        budget = enrichment_budget_guard(db)
        settled = 0
        for external_id in external_ids:
            try:
                batch = provider.fetch(external_id)
                settled += handle_delivery(db, batch, budget).processed
            except (AdapterError, ResearchError) as e:
                db.rollback()
                logger.warning(
                    "Polling enrichment batch failed: %s",
                    e,
                    extra={"provider": provider.name, "step": "poll"},
                )
        logger.info(
            "Polled %d enrichment batches",
            len(external_ids),
            extra={"step": "poll"},
        )
        return settled
    finally:
        db.close()
