from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ...schemas.canonical import CanonicalModel, EnrichmentBatch, EnrichmentCorrelation

MAX_ERROR_LENGTH = 500


class AdapterErrorKind(str, enum.Enum):
    RATE_LIMITED = "rate_limited"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    CANCELED = "canceled"
    SCHEMA_INVALID = "schema_invalid"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    UNKNOWN = "unknown"


# Failures that will keep happening for every target until someone intervenes
CAMPAIGN_FATAL_KINDS = (
    AdapterErrorKind.RATE_LIMITED,
    AdapterErrorKind.INSUFFICIENT_CREDITS,
)


class AdapterError(Exception):
    """A provider call failed; ``kind`` is persisted as the job's error_code."""

    def __init__(
        self,
        kind: AdapterErrorKind,
        message: str,
        tokens_used: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = truncate_error(message)
        self.tokens_used = tokens_used


def truncate_error(message: str | None) -> str:
    return (message or "Unknown error")[:MAX_ERROR_LENGTH]


class ResearchCompletion:
    """Validated structured output plus the accounting that came with it."""

    def __init__(self, result: CanonicalModel, model_used: str, tokens_used: Optional[int]):
        self.result = result
        self.model_used = model_used
        self.tokens_used = tokens_used


class ResearchProvider(ABC):
    name: str

    @abstractmethod
    def complete_json(
        self,
        prompt: str,
        result_model: type[CanonicalModel],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        system_prompt: Optional[str] = None,
    ) -> ResearchCompletion:
        ...


class ContactHint(dict):
    """
    What we know about a person before enrichment.

    Keys: first_name, last_name, company_name, domain, linkedin_url, email.
    """


class EnrichmentProvider(ABC):
    name: str

    @abstractmethod
    def submit(
        self,
        batch_name: str,
        contacts: List[tuple[ContactHint, EnrichmentCorrelation]],
        webhook_url: Optional[str] = None,
    ) -> str:
        """Submit contacts and return the provider's job id."""

    @abstractmethod
    def fetch(self, external_job_id: str) -> EnrichmentBatch:
        ...

    @abstractmethod
    def normalize(self, payload: Dict[str, Any]) -> EnrichmentBatch:
        ...
