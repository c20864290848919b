"""
Tests for the stale-job sweep across both job tables.
"""
from datetime import datetime, timedelta
from uuid import uuid4

from app.models.job_record import JobStatus
from app.services.enrichment import enrichment_store
from app.services.reconciliation import fail_stale_jobs_in
from app.services.research import research_store

from tests.fixtures.research_fixtures import PROJECT_ID


def test_sweep_uses_separate_ages_per_job_kind(db_session):
    research = research_store(db_session).create(
        project_id=PROJECT_ID,
        entity_type="rfp",
        entity_id=uuid4(),
        prompt="Research this RFP",
    )
    enrichment = enrichment_store(db_session).create(
        project_id=PROJECT_ID,
        entity_type="person",
        entity_id=uuid4(),
        status=JobStatus.PENDING,
        request_payload={},
    )

    # An hour later only the research job is past its allowed age
    counts = fail_stale_jobs_in(db_session, now=datetime.utcnow() + timedelta(hours=1))

    assert counts == {"research": 1, "enrichment": 0}
    db_session.refresh(research)
    db_session.refresh(enrichment)
    assert research.status == JobStatus.FAILED
    assert research.error == "Job did not finish within 30 minutes"
    assert enrichment.status == JobStatus.PENDING

    counts = fail_stale_jobs_in(db_session, now=datetime.utcnow() + timedelta(days=2))

    assert counts == {"research": 0, "enrichment": 1}
    db_session.refresh(enrichment)
    assert enrichment.error_code == "timeout"
