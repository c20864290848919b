# backend/app/schemas/enrichment.py
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..models.job_record import JobStatus
from .research import FieldMappingOut, FieldUpdate, Pagination

MAX_ENRICH_BATCH = 100
MAX_APPLY_UPDATES = 50


class StartEnrichmentRequest(BaseModel):
    person_id: UUID | None = None
    person_ids: list[UUID] | None = Field(default=None, min_length=1, max_length=MAX_ENRICH_BATCH)

    @model_validator(mode="after")
    def validate_targets(self):
        if self.person_id is None and not self.person_ids:
            raise ValueError("person_id or person_ids must be provided")
        if self.person_id is not None and self.person_ids:
            raise ValueError("provide either person_id or person_ids, not both")
        return self

    @property
    def targets(self) -> list[UUID]:
        if self.person_id is not None:
            return [self.person_id]
        # Preserve order, drop duplicates
        return list(dict.fromkeys(self.person_ids or []))


class EnrichmentJobOut(BaseModel):
    id: UUID
    project_id: UUID
    entity_id: UUID
    status: JobStatus
    request_payload: dict
    external_job_id: str | None = None
    result: dict | None = None
    error: str | None = None
    error_code: str | None = None
    credits_used: int | None = None
    applied_fields: list[str] | None = None
    fields_updated: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_by: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class StartEnrichmentResponse(BaseModel):
    jobs: list[EnrichmentJobOut]
    external_job_id: str | None = None
    skipped: list[dict] = []


class EnrichmentHistoryResponse(BaseModel):
    jobs: list[EnrichmentJobOut]
    pagination: Pagination


class ApplyEnrichmentRequest(BaseModel):
    job_id: UUID
    field_updates: list[FieldUpdate] = Field(min_length=1, max_length=MAX_APPLY_UPDATES)


class ApplyEnrichmentResponse(BaseModel):
    success: bool = True
    fields_updated: int
    standard_fields: list[str]
    custom_fields: list[str]


class WebhookAck(BaseModel):
    processed: int
    status: str
    credits_used: int | None = None


class EnrichmentJobDetailResponse(BaseModel):
    job: EnrichmentJobOut
    field_mappings: list[FieldMappingOut] = []
    # Result scored below ENRICHMENT_MIN_CONFIDENCE; nothing is suggested
    below_min_confidence: bool = False
