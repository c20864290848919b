"""
Tests for research.py executors outside the HTTP layer: the background RFP
path and per-project research settings.
"""
from uuid import uuid4

import pytest

from app.core.errors import JobNotFound, ValidationFailed
from app.models.job_record import JobStatus
from app.models.research_job import ResearchJob
from app.models.research_settings import ResearchSettings
from app.models.usage import ProviderUsageLog
from app.schemas.canonical import PersonResearch, RfpResearch
from app.services.providers.base import AdapterError, AdapterErrorKind
from app.services.research import (
    execute_rfp_research,
    research_store,
    run_rfp_research_job,
    start_entity_research,
    start_rfp_research,
)

from tests.fixtures.fakes import RecordingDispatcher
from tests.fixtures.research_fixtures import (
    PERSON_RESULT,
    PROJECT_ID,
    RFP_RESULT,
    make_organization,
    make_person,
    make_rfp,
)


def _started_rfp_job(db, budget):
    rfp = make_rfp(db)
    return start_rfp_research(
        db,
        project_id=PROJECT_ID,
        rfp_id=rfp.id,
        budget=budget,
        dispatcher=RecordingDispatcher(),
    )


class TestExecuteRfpResearch:
    def test_completes_with_validated_result(self, db_session, research_provider, llm_budget):
        job = _started_rfp_job(db_session, llm_budget)
        research_provider.responses.append(RFP_RESULT)

        execute_rfp_research(db_session, job.id, research_provider, llm_budget)

        db_session.refresh(job)
        assert job.status == JobStatus.COMPLETED
        assert job.result["executive_summary"].startswith("The city")
        assert job.tokens_used == 100
        call = research_provider.calls[0]
        assert call["result_model"] is RfpResearch
        assert call["max_tokens"] == 8192
        assert call["temperature"] == 0.2

    def test_adapter_failure_fails_job(self, db_session, research_provider, llm_budget):
        job = _started_rfp_job(db_session, llm_budget)
        research_provider.responses.append(
            AdapterError(AdapterErrorKind.PROVIDER_UNAVAILABLE, "Provider unreachable")
        )

        execute_rfp_research(db_session, job.id, research_provider, llm_budget)

        db_session.refresh(job)
        assert job.status == JobStatus.FAILED
        assert job.error_code == "provider_unavailable"

    def test_unexpected_error_fails_job_as_unknown(self, db_session, research_provider, llm_budget):
        job = _started_rfp_job(db_session, llm_budget)
        research_provider.responses.append(RuntimeError("socket closed"))

        execute_rfp_research(db_session, job.id, research_provider, llm_budget)

        db_session.refresh(job)
        assert job.status == JobStatus.FAILED
        assert job.error_code == "unknown"
        assert job.error == "socket closed"

    def test_finished_job_is_not_run_again(self, db_session, research_provider, llm_budget):
        job = _started_rfp_job(db_session, llm_budget)
        research_store(db_session).mark_failed(job, "timed out", "timeout")

        execute_rfp_research(db_session, job.id, research_provider, llm_budget)

        assert research_provider.calls == []
        db_session.refresh(job)
        assert job.error_code == "timeout"

    def test_budget_exhausted_before_call(self, db_session, research_provider, llm_budget):
        job = _started_rfp_job(db_session, llm_budget)
        llm_budget.limit = 10
        llm_budget.record(10)

        execute_rfp_research(db_session, job.id, research_provider, llm_budget)

        db_session.refresh(job)
        assert job.status == JobStatus.FAILED
        assert job.error_code == "budget_exhausted"
        assert research_provider.calls == []

    def test_unknown_job(self, db_session, research_provider, llm_budget):
        with pytest.raises(JobNotFound):
            execute_rfp_research(db_session, uuid4(), research_provider, llm_budget)


class TestRfpResearchTask:
    """The Celery entry point opens its own session and provider."""

    @pytest.fixture
    def task_env(self, monkeypatch, db_session, research_provider, llm_budget):
        monkeypatch.setattr("app.services.research.SessionLocal", lambda: db_session)
        monkeypatch.setattr("app.services.research.get_research_provider", lambda: research_provider)
        monkeypatch.setattr("app.services.research.llm_budget_guard", lambda db: llm_budget)
        return monkeypatch

    def test_runs_job_to_completion(self, task_env, db_session, research_provider, llm_budget):
        job_id = _started_rfp_job(db_session, llm_budget).id
        research_provider.responses.append(RFP_RESULT)

        run_rfp_research_job(str(job_id))

        job = db_session.get(ResearchJob, job_id)
        assert job.status == JobStatus.COMPLETED

    def test_setup_failure_marks_job_failed_and_reraises(self, task_env, db_session, llm_budget):
        job_id = _started_rfp_job(db_session, llm_budget).id

        def broken_guard(db):
            raise RuntimeError("budget table unavailable")

        task_env.setattr("app.services.research.llm_budget_guard", broken_guard)

        with pytest.raises(RuntimeError):
            run_rfp_research_job(str(job_id))

        job = db_session.get(ResearchJob, job_id)
        assert job.status == JobStatus.FAILED
        assert job.error_code == "unknown"
        assert job.error == "budget table unavailable"


class TestResearchSettings:
    def test_project_settings_override_defaults(self, db_session, research_provider, llm_budget):
        db_session.add(
            ResearchSettings(
                project_id=PROJECT_ID,
                system_prompt="You are terse.",
                user_prompt_template="Look up {{full_name}} at {{organization_name}}.",
                model_id="openai/gpt-4o",
                temperature=0.0,
                max_tokens=1000,
            )
        )
        db_session.commit()
        org = make_organization(db_session, name="Analytical Engines")
        person = make_person(db_session, organization_id=org.id)
        research_provider.responses.append(PERSON_RESULT)

        outcome = start_entity_research(
            db_session,
            project_id=PROJECT_ID,
            entity_type="person",
            entity_id=person.id,
            provider=research_provider,
            budget=llm_budget,
        )

        assert outcome.job.status == JobStatus.COMPLETED
        call = research_provider.calls[0]
        assert call["result_model"] is PersonResearch
        assert call["model"] == "openai/gpt-4o"
        assert call["temperature"] == 0.0
        assert call["max_tokens"] == 1000
        assert call["system_prompt"] == "You are terse."
        assert call["prompt"].startswith(
            "Look up <user_data>Ada Lovelace</user_data> at <user_data>Analytical Engines</user_data>."
        )

    def test_rfp_is_rejected_on_sync_path(self, db_session, research_provider, llm_budget):
        rfp = make_rfp(db_session)
        with pytest.raises(ValidationFailed):
            start_entity_research(
                db_session,
                project_id=PROJECT_ID,
                entity_type="rfp",
                entity_id=rfp.id,
                provider=research_provider,
                budget=llm_budget,
            )

    def test_usage_is_recorded_per_job(self, db_session, research_provider, llm_budget):
        person = make_person(db_session)
        research_provider.responses.append(PERSON_RESULT)

        outcome = start_entity_research(
            db_session,
            project_id=PROJECT_ID,
            entity_type="person",
            entity_id=person.id,
            provider=research_provider,
            budget=llm_budget,
        )

        entry = db_session.query(ProviderUsageLog).one()
        assert entry.meta["job_id"] == str(outcome.job.id)
        assert entry.project_id == PROJECT_ID
