# backend/app/schemas/canonical.py
"""
Provider-agnostic result shapes.

Every adapter normalises its raw response into one of these models before
anything else in the system sees it. Research models are validated in strict
mode: a provider returning ``"50"`` for ``employee_count`` is a schema
failure, not something to coerce.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


CustomFieldValue = Union[str, int, float, bool, List[str], None]


class CanonicalModel(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore")


# ---------------------------------------------------------------------------
# Research (AI structured output)
# ---------------------------------------------------------------------------


class Location(CanonicalModel):
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None


class NewsItem(CanonicalModel):
    title: str
    date: Optional[str] = None
    summary: str


class ResearchResultBase(CanonicalModel):
    custom_fields: Dict[str, CustomFieldValue] = Field(default_factory=dict)
    confidence_scores: Dict[str, float] = Field(default_factory=dict)


class OrganizationResearch(ResearchResultBase):
    company_name: Optional[str] = None
    website: Optional[str] = None
    industry: Optional[str] = None
    employee_count: Optional[int] = None
    annual_revenue: Optional[str] = None
    description: Optional[str] = None
    headquarters: Optional[Location] = None
    founded_year: Optional[int] = None
    key_products: Optional[List[str]] = None
    competitors: Optional[List[str]] = None
    recent_news: Optional[List[NewsItem]] = None


class Education(CanonicalModel):
    institution: str
    degree: Optional[str] = None
    year: Optional[int] = None


class WorkHistoryEntry(CanonicalModel):
    company: str
    title: str
    start_year: Optional[int] = None
    end_year: Optional[int] = None


class PersonResearch(ResearchResultBase):
    full_name: Optional[str] = None
    current_title: Optional[str] = None
    current_company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    linkedin_url: Optional[str] = None
    location: Optional[Location] = None
    education: Optional[List[Education]] = None
    work_history: Optional[List[WorkHistoryEntry]] = None
    skills: Optional[List[str]] = None
    bio: Optional[str] = None


# RFP research is narrative intelligence; it is displayed, never merged.


class Leader(CanonicalModel):
    name: str
    title: str
    relevance: Optional[str] = None


class OrganizationProfile(CanonicalModel):
    overview: Optional[str] = None
    headquarters: Optional[str] = None
    employee_count: Optional[str] = None
    annual_budget: Optional[str] = None
    leadership: Optional[List[Leader]] = None
    recent_initiatives: Optional[List[str]] = None
    procurement_history: Optional[str] = None


class IndustryContext(CanonicalModel):
    market_overview: Optional[str] = None
    trends: Optional[List[str]] = None
    market_size: Optional[str] = None
    regulatory_environment: Optional[str] = None


class Competitor(CanonicalModel):
    name: str
    likelihood: Literal["high", "medium", "low"]
    strengths: Optional[List[str]] = None
    recent_wins: Optional[List[str]] = None


class CompetitorAnalysis(CanonicalModel):
    likely_bidders: Optional[List[Competitor]] = None
    competitive_landscape: Optional[str] = None


class SimilarContract(CanonicalModel):
    title: str
    issuer: str
    value: Optional[str] = None
    winner: Optional[str] = None
    date: Optional[str] = None
    relevance: str


class KeyDecisionMaker(CanonicalModel):
    name: Optional[str] = None
    title: str
    role_in_decision: Optional[str] = None
    linkedin_url: Optional[str] = None


class PressItem(CanonicalModel):
    title: str
    source: str
    date: Optional[str] = None
    summary: str
    relevance: str
    url: str


class ComplianceContext(CanonicalModel):
    relevant_regulations: Optional[List[str]] = None
    certifications_required: Optional[List[str]] = None
    compliance_notes: Optional[str] = None


class MarketIntelligence(CanonicalModel):
    pricing_benchmarks: Optional[str] = None
    typical_contract_length: Optional[str] = None
    evaluation_criteria_insights: Optional[str] = None


class ResearchSource(CanonicalModel):
    url: str
    title: str
    domain: str
    snippet: Optional[str] = None
    published_date: Optional[str] = None
    section: str


class RfpResearch(CanonicalModel):
    organization_profile: Optional[OrganizationProfile] = None
    industry_context: Optional[IndustryContext] = None
    competitor_analysis: Optional[CompetitorAnalysis] = None
    similar_contracts: Optional[List[SimilarContract]] = None
    key_decision_makers: Optional[List[KeyDecisionMaker]] = None
    news_and_press: Optional[List[PressItem]] = None
    compliance_context: Optional[ComplianceContext] = None
    market_intelligence: Optional[MarketIntelligence] = None
    executive_summary: str
    key_insights: List[str]
    recommended_actions: List[str]
    sources: List[ResearchSource]


ResearchResult = Union[OrganizationResearch, PersonResearch, RfpResearch]

RESEARCH_RESULT_MODELS: Dict[str, type[CanonicalModel]] = {
    "organization": OrganizationResearch,
    "person": PersonResearch,
    "rfp": RfpResearch,
}


class DiscoveredContact(CanonicalModel):
    id: Optional[str] = None
    name: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    title: Optional[str] = None
    email: Optional[str] = None
    linkedin_url: Optional[str] = None
    confidence: float = Field(ge=0, le=1)
    source_hint: Optional[str] = None


class ContactDiscoveryResult(CanonicalModel):
    contacts: List[DiscoveredContact] = Field(default_factory=list)
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Contact enrichment
# ---------------------------------------------------------------------------


class EnrichmentCorrelation(BaseModel):
    """
    Typed form of the provider's opaque passthrough ("custom") field.

    Sent with every submitted contact and validated on receipt so webhook
    records can be matched to jobs without relying on array order.
    """

    person_id: UUID
    job_id: UUID


class ContactCandidate(BaseModel):
    value: str
    type: Optional[str] = None    # 'work', 'personal', 'mobile', 'landline', ...
    status: Optional[str] = None  # provider deliverability/validity flag


class ContactEnrichmentResult(BaseModel):
    email: Optional[str] = None
    work_email: Optional[str] = None
    personal_email: Optional[str] = None
    phone: Optional[str] = None
    mobile_phone: Optional[str] = None
    work_phone: Optional[str] = None
    emails: List[ContactCandidate] = Field(default_factory=list)
    phones: List[ContactCandidate] = Field(default_factory=list)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    job_title: Optional[str] = None
    company: Optional[str] = None
    linkedin_url: Optional[str] = None
    location: Optional[Location] = None
    confidence_score: Optional[float] = None
    correlation: Optional[EnrichmentCorrelation] = None
    # Per-record provider error; such a record fails only its own job
    error: Optional[str] = None

    @property
    def best_email(self) -> Optional[str]:
        if self.email:
            return self.email
        if self.work_email:
            return self.work_email
        return self.emails[0].value if self.emails else None

    @property
    def best_phone(self) -> Optional[str]:
        if self.phone:
            return self.phone
        if self.mobile_phone:
            return self.mobile_phone
        return self.phones[0].value if self.phones else None


class EnrichmentBatch(BaseModel):
    """One provider-side enrichment job, normalised."""

    external_job_id: str
    status: Literal["pending", "running", "completed", "failed"]
    error_kind: Optional[str] = None  # AdapterErrorKind value when failed
    error: Optional[str] = None
    credits_used: Optional[int] = None
    results: List[ContactEnrichmentResult] = Field(default_factory=list)


def dump_result(result: BaseModel) -> Dict[str, Any]:
    return result.model_dump(mode="json")


def load_result(model: type[BaseModel], data: Any):
    """Re-validate stored JSON in JSON mode, where strict nested models accept objects."""
    return model.model_validate_json(json.dumps(data))
