"""
Infrastructure errors raised by the job store and executors.

Routes translate these into HTTP responses (see ``app.main``); adapter
failures are a separate family in ``app.services.providers.base``.
"""
from __future__ import annotations

from uuid import UUID


class ResearchError(Exception):
    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(ResearchError):
    status_code = 400
    code = "validation_failed"


class EntityNotFound(ResearchError):
    status_code = 404
    code = "entity_not_found"

    def __init__(self, entity_type: str, entity_id: UUID | str):
        super().__init__(f"{entity_type.capitalize()} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class JobNotFound(ResearchError):
    status_code = 404
    code = "job_not_found"

    def __init__(self, job_id: UUID | str):
        super().__init__("Job not found")
        self.job_id = job_id


class JobConflict(ResearchError):
    """A job for the same entity is already running."""

    status_code = 409
    code = "job_conflict"

    def __init__(self, existing_job_id: UUID | None, message: str = "Research is already running"):
        super().__init__(message)
        self.existing_job_id = existing_job_id


class JobAlreadyTerminal(ResearchError):
    """Attempted to transition a job that already completed or failed."""

    status_code = 409
    code = "job_already_terminal"

    def __init__(self, job_id: UUID, status: str):
        super().__init__(f"Job {job_id} is already {status}")
        self.job_id = job_id
        self.status = status


class InvalidJobState(ResearchError):
    status_code = 400
    code = "invalid_job_state"


class BudgetExhausted(ResearchError):
    status_code = 429
    code = "budget_exhausted"

    def __init__(self, provider: str, used: int, limit: int):
        super().__init__(f"Usage budget exhausted for {provider} ({used}/{limit})")
        self.provider = provider
        self.used = used
        self.limit = limit


class SignatureInvalid(ResearchError):
    status_code = 401
    code = "signature_invalid"
