# backend/app/schemas/research.py
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.job_record import EntityType, JobStatus
from ..services.merge import MergePolicy

MAX_ADDITIONAL_CONTEXT_LEN = 2000
MAX_HISTORY_LIMIT = 100
MAX_FIELD_UPDATES = 100
MAX_DISCOVERY_ROLES = 20


class StartResearchRequest(BaseModel):
    entity_type: Literal["organization", "person"]
    entity_id: UUID
    include_custom_fields: bool = True
    # Apply accepted fields straight after completion
    auto_apply: bool = False
    merge_policy: MergePolicy = MergePolicy.FILL_EMPTY


class StartRfpResearchRequest(BaseModel):
    additional_context: str | None = None

    @field_validator("additional_context", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            stripped = v.strip()
            return stripped or None
        return v

    @field_validator("additional_context")
    @classmethod
    def validate_additional_context(cls, v: str | None) -> str | None:
        if v is not None and len(v) > MAX_ADDITIONAL_CONTEXT_LEN:
            raise ValueError(
                f"additional_context must be at most {MAX_ADDITIONAL_CONTEXT_LEN} characters"
            )
        return v


class FieldUpdate(BaseModel):
    field_name: str = Field(min_length=1, max_length=100)
    is_custom: bool = False
    value: Any = None


class ApplyResultsRequest(BaseModel):
    job_id: UUID | None = None
    field_updates: list[FieldUpdate] = Field(min_length=1, max_length=MAX_FIELD_UPDATES)


class ResearchJobOut(BaseModel):
    id: UUID
    project_id: UUID
    entity_type: EntityType
    entity_id: UUID
    status: JobStatus
    prompt: str
    result: dict | None = None
    error: str | None = None
    error_code: str | None = None
    model_used: str | None = None
    tokens_used: int | None = None
    applied_fields: list[str] | None = None
    fields_updated: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_by: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class StartResearchResponse(BaseModel):
    job: ResearchJobOut
    fields_updated: int = 0


class StartRfpResearchResponse(BaseModel):
    job: ResearchJobOut
    status: Literal["started"] = "started"


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int


class ResearchHistoryResponse(BaseModel):
    jobs: list[ResearchJobOut]
    pagination: Pagination


class RfpResearchHistoryResponse(BaseModel):
    results: list[ResearchJobOut]
    latest: ResearchJobOut | None = None


class ApplyResultsResponse(BaseModel):
    success: bool = True
    fields_updated: int
    standard_fields: list[str]
    custom_fields: list[str]


class EntitySnapshotResponse(BaseModel):
    entity_type: EntityType
    id: UUID
    name: str | None = None
    snapshot: dict
    custom_field_names: list[str] = []


class FieldMappingOut(BaseModel):
    source_field: str
    target_field: str
    target_is_custom: bool
    value: Any = None
    current_value: Any = None
    confidence: float | None = None
    should_update: bool

    model_config = ConfigDict(from_attributes=True)


class ResearchJobDetailResponse(BaseModel):
    job: ResearchJobOut
    field_mappings: list[FieldMappingOut] = []


class DiscoverContactsRequest(BaseModel):
    roles: list[str] = Field(min_length=1, max_length=MAX_DISCOVERY_ROLES)
    max_results: int = Field(default=10, ge=1, le=25)

    @field_validator("roles")
    @classmethod
    def _strip_roles(cls, v: list[str]) -> list[str]:
        roles = [r.strip() for r in v if r.strip()]
        if not roles:
            raise ValueError("At least one role is required")
        return roles


class DiscoveredContactOut(BaseModel):
    id: str
    name: str
    first_name: str | None = None
    last_name: str | None = None
    title: str | None = None
    email: str | None = None
    linkedin_url: str | None = None
    confidence: float
    source_hint: str | None = None

    model_config = ConfigDict(from_attributes=True)


class OrganizationRef(BaseModel):
    id: UUID
    name: str | None = None


class DiscoverContactsResponse(BaseModel):
    contacts: list[DiscoveredContactOut]
    notes: str | None = None
    organization: OrganizationRef
    roles_searched: list[str]
