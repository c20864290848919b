# backend/app/services/job_store.py
from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.errors import JobAlreadyTerminal, JobConflict, JobNotFound
from ..models.job_record import JobStatus
from .providers.base import truncate_error

logger = logging.getLogger(__name__)

OPEN_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING)


class JobStore:
    """
    Persistence for job records of one table (research or enrichment).

    Status transitions are conditional updates: a job leaves ``pending`` or
    ``running`` exactly once, and a second terminal transition raises
    JobAlreadyTerminal instead of overwriting the first.
    """

    def __init__(
        self,
        db: Session,
        model: type,
        conflict_statuses: Sequence[JobStatus] = (JobStatus.RUNNING,),
    ):
        self.db = db
        self.model = model
        self.conflict_statuses = tuple(conflict_statuses)

    # ------------------------------------------------------------------
    # Creation & lookup
    # ------------------------------------------------------------------

    def create(
        self,
        *,
        project_id: UUID,
        entity_type: str,
        entity_id: UUID,
        status: JobStatus = JobStatus.RUNNING,
        created_by: str | None = None,
        **fields: Any,
    ):
        existing = self.find_running_by_entity(entity_type, entity_id)
        if existing is not None:
            raise JobConflict(existing.id)

        now = datetime.utcnow()
        job = self.model(
            id=uuid4(),
            project_id=project_id,
            entity_type=entity_type,
            entity_id=entity_id,
            status=status,
            created_by=created_by,
            started_at=now if status == JobStatus.RUNNING else None,
            created_at=now,
            **fields,
        )
        self.db.add(job)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost the race against a concurrent create; the unique index decided
            self.db.rollback()
            existing = self.find_running_by_entity(entity_type, entity_id)
            raise JobConflict(existing.id if existing else None)
        self.db.refresh(job)

        logger.info(
            "Job created",
            extra={
                "job_id": str(job.id),
                "project_id": str(project_id),
                "entity_id": str(entity_id),
                "step": f"{self.model.__tablename__}:created",
            },
        )
        return job

    def get(self, job_id: UUID, project_id: UUID | None = None):
        query = self.db.query(self.model).filter(self.model.id == job_id)
        if project_id is not None:
            query = query.filter(self.model.project_id == project_id)
        job = query.first()
        if job is None:
            raise JobNotFound(job_id)
        return job

    def find_running_by_entity(self, entity_type: str, entity_id: UUID):
        return (
            self.db.query(self.model)
            .filter(
                self.model.entity_type == entity_type,
                self.model.entity_id == entity_id,
                self.model.status.in_(self.conflict_statuses),
            )
            .order_by(self.model.created_at.desc())
            .first()
        )

    def list_jobs(
        self,
        project_id: UUID,
        *,
        entity_type: str | None = None,
        entity_id: UUID | None = None,
        status: JobStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Any], int]:
        query = self.db.query(self.model).filter(self.model.project_id == project_id)
        if entity_type:
            query = query.filter(self.model.entity_type == entity_type)
        if entity_id:
            query = query.filter(self.model.entity_id == entity_id)
        if status:
            query = query.filter(self.model.status == status)

        total = query.count()
        jobs = (
            query.order_by(self.model.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return jobs, total

    def find_by_external_id(self, external_job_id: str) -> List[Any]:
        return (
            self.db.query(self.model)
            .filter(self.model.external_job_id == external_job_id)
            .order_by(self.model.created_at.asc())
            .all()
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(self, job, allowed_from: Iterable[JobStatus], values: Dict[str, Any]):
        updated = (
            self.db.query(self.model)
            .filter(self.model.id == job.id, self.model.status.in_(tuple(allowed_from)))
            .update(values, synchronize_session=False)
        )
        if updated == 0:
            self.db.rollback()
            self.db.refresh(job)
            raise JobAlreadyTerminal(job.id, job.status.value if job.status else "unknown")
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self.find_running_by_entity(job.entity_type, job.entity_id)
            raise JobConflict(existing.id if existing else None)
        self.db.refresh(job)
        return job

    def mark_running(self, job, external_job_id: str | None = None):
        values: Dict[str, Any] = {
            "status": JobStatus.RUNNING,
            "started_at": job.started_at or datetime.utcnow(),
        }
        if external_job_id is not None:
            values["external_job_id"] = external_job_id
        return self._transition(job, OPEN_STATUSES, values)

    def mark_completed(self, job, result: Dict[str, Any] | None, **fields: Any):
        values = {
            "status": JobStatus.COMPLETED,
            "result": result if result is not None else {},
            "error": None,
            "error_code": None,
            "completed_at": datetime.utcnow(),
            **fields,
        }
        self._transition(job, OPEN_STATUSES, values)
        logger.info(
            "Job completed",
            extra={"job_id": str(job.id), "step": f"{self.model.__tablename__}:completed"},
        )
        return job

    def mark_failed(self, job, error: str | None, error_code: str | None = None, **fields: Any):
        values = {
            "status": JobStatus.FAILED,
            "error": truncate_error(error),
            "error_code": error_code,
            "completed_at": datetime.utcnow(),
            **fields,
        }
        self._transition(job, OPEN_STATUSES, values)
        logger.info(
            "Job failed",
            extra={"job_id": str(job.id), "step": f"{self.model.__tablename__}:failed"},
        )
        return job

    def record_applied_fields(self, job, field_names: Iterable[str]):
        """Applied-field bookkeeping is the only write allowed on a terminal job."""
        names = list(field_names)
        applied = list(job.applied_fields or [])
        applied.extend(n for n in names if n not in applied)
        job.applied_fields = applied
        job.fields_updated = (job.fields_updated or 0) + len(names)
        self.db.commit()
        self.db.refresh(job)
        return job

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def fail_stale(self, max_age: timedelta, now: Optional[datetime] = None) -> int:
        """Fail open jobs older than ``max_age``; returns how many were failed."""
        cutoff = (now or datetime.utcnow()) - max_age
        stale = (
            self.db.query(self.model)
            .filter(
                self.model.status.in_(OPEN_STATUSES),
                self.model.created_at < cutoff,
            )
            .all()
        )
        failed = 0
        for job in stale:
            try:
                self.mark_failed(
                    job,
                    f"Job did not finish within {int(max_age.total_seconds() // 60)} minutes",
                    error_code="timeout",
                )
                failed += 1
            except JobAlreadyTerminal:
                # Finished between the query and the update
                continue
        return failed

