"""
Tests for job_store.py - job persistence and state transitions.
"""
from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from app.core.errors import JobAlreadyTerminal, JobConflict, JobNotFound
from app.models.enrichment_job import EnrichmentJob
from app.models.job_record import EntityType, JobStatus
from app.models.research_job import ResearchJob
from app.services.job_store import JobStore

from tests.fixtures.research_fixtures import PROJECT_ID


def _research_store(db):
    return JobStore(db, ResearchJob)


def _create(store, entity_id=None, **fields):
    fields.setdefault("prompt", "Research this")
    return store.create(
        project_id=PROJECT_ID,
        entity_type="organization",
        entity_id=entity_id or uuid4(),
        **fields,
    )


class TestCreate:
    def test_create_defaults_to_running(self, db_session):
        job = _create(_research_store(db_session), created_by="user-1")

        assert job.status == JobStatus.RUNNING
        assert job.entity_type == EntityType.ORGANIZATION
        assert job.started_at is not None
        assert job.result is None and job.error is None
        assert job.created_by == "user-1"
        assert job.fields_updated == 0

    def test_second_running_job_for_entity_conflicts(self, db_session):
        store = _research_store(db_session)
        entity_id = uuid4()
        first = _create(store, entity_id)

        with pytest.raises(JobConflict) as exc:
            _create(store, entity_id)

        assert exc.value.existing_job_id == first.id
        assert db_session.query(ResearchJob).count() == 1

    def test_unique_index_rejects_duplicate_running_rows(self, db_session):
        """The database itself refuses a second running job for an entity."""
        store = _research_store(db_session)
        entity_id = uuid4()
        first = _create(store, entity_id)

        # Skip the pre-check to exercise the index
        store.find_running_by_entity = lambda entity_type, entity_id: None
        with pytest.raises(JobConflict):
            _create(store, entity_id)

        assert db_session.query(ResearchJob).count() == 1
        assert db_session.query(ResearchJob).first().id == first.id

    def test_new_job_allowed_after_previous_finishes(self, db_session):
        store = _research_store(db_session)
        entity_id = uuid4()
        first = _create(store, entity_id)
        store.mark_failed(first, "boom")

        second = _create(store, entity_id)
        assert second.id != first.id

    def test_pending_jobs_conflict_when_configured(self, db_session):
        store = JobStore(
            db_session, EnrichmentJob, conflict_statuses=(JobStatus.PENDING, JobStatus.RUNNING)
        )
        person_id = uuid4()
        store.create(
            project_id=PROJECT_ID,
            entity_type="person",
            entity_id=person_id,
            status=JobStatus.PENDING,
            request_payload={},
        )
        with pytest.raises(JobConflict):
            store.create(
                project_id=PROJECT_ID,
                entity_type="person",
                entity_id=person_id,
                status=JobStatus.PENDING,
                request_payload={},
            )


class TestTransitions:
    def test_mark_completed(self, db_session):
        store = _research_store(db_session)
        job = _create(store)

        store.mark_completed(job, {"company_name": "Acme"}, tokens_used=120, model_used="m")

        assert job.status == JobStatus.COMPLETED
        assert job.result == {"company_name": "Acme"}
        assert job.error is None
        assert job.tokens_used == 120
        assert job.completed_at is not None

    def test_mark_failed_truncates_error(self, db_session):
        store = _research_store(db_session)
        job = _create(store)

        store.mark_failed(job, "x" * 2000, "schema_invalid")

        assert job.status == JobStatus.FAILED
        assert len(job.error) == 500
        assert job.error_code == "schema_invalid"
        assert job.result is None

    def test_terminal_job_cannot_transition_again(self, db_session):
        store = _research_store(db_session)
        job = _create(store)
        store.mark_completed(job, {"a": 1})

        with pytest.raises(JobAlreadyTerminal):
            store.mark_failed(job, "late failure")
        with pytest.raises(JobAlreadyTerminal):
            store.mark_completed(job, {"a": 2})

        db_session.refresh(job)
        assert job.status == JobStatus.COMPLETED
        assert job.result == {"a": 1}

    def test_mark_running_sets_external_id(self, db_session):
        store = JobStore(db_session, EnrichmentJob)
        job = store.create(
            project_id=PROJECT_ID,
            entity_type="person",
            entity_id=uuid4(),
            status=JobStatus.PENDING,
            request_payload={"first_name": "Ada"},
        )
        assert job.started_at is None

        store.mark_running(job, external_job_id="enr-1")

        assert job.status == JobStatus.RUNNING
        assert job.external_job_id == "enr-1"
        assert job.started_at is not None
        assert store.find_by_external_id("enr-1") == [job]

    def test_record_applied_fields_on_completed_job(self, db_session):
        store = _research_store(db_session)
        job = _create(store)
        store.mark_completed(job, {})

        store.record_applied_fields(job, ["industry", "tech_stack"])
        store.record_applied_fields(job, ["industry"])

        assert job.applied_fields == ["industry", "tech_stack"]
        assert job.fields_updated == 3
        assert job.status == JobStatus.COMPLETED


class TestLookup:
    def test_get_scoped_to_project(self, db_session):
        store = _research_store(db_session)
        job = _create(store)

        assert store.get(job.id, project_id=PROJECT_ID).id == job.id
        with pytest.raises(JobNotFound):
            store.get(job.id, project_id=uuid4())
        with pytest.raises(JobNotFound):
            store.get(uuid4())

    def test_list_jobs_newest_first_with_total(self, db_session):
        store = _research_store(db_session)
        entity_id = uuid4()
        jobs = []
        for _ in range(3):
            job = _create(store, entity_id)
            store.mark_completed(job, {})
            jobs.append(job)
        _create(store)  # another entity

        listed, total = store.list_jobs(PROJECT_ID, entity_id=entity_id, limit=2)

        assert total == 3
        assert len(listed) == 2
        assert listed[0].created_at >= listed[1].created_at

    def test_list_jobs_filters_by_status(self, db_session):
        store = _research_store(db_session)
        done = _create(store)
        store.mark_completed(done, {})
        _create(store)

        listed, total = store.list_jobs(PROJECT_ID, status=JobStatus.RUNNING)
        assert total == 1
        assert listed[0].status == JobStatus.RUNNING


class TestFailStale:
    def test_only_old_open_jobs_are_failed(self, db_session):
        store = _research_store(db_session)
        old = _create(store)
        recent = _create(store)
        finished = _create(store)
        store.mark_completed(finished, {})

        now = datetime.utcnow() + timedelta(minutes=45)
        recent.created_at = now - timedelta(minutes=5)
        db_session.commit()

        failed = store.fail_stale(timedelta(minutes=30), now=now)

        assert failed == 1
        db_session.refresh(old)
        db_session.refresh(recent)
        db_session.refresh(finished)
        assert old.status == JobStatus.FAILED
        assert old.error_code == "timeout"
        assert recent.status == JobStatus.RUNNING
        assert finished.status == JobStatus.COMPLETED
