from __future__ import annotations

from functools import lru_cache

from .base import (
    AdapterError,
    AdapterErrorKind,
    EnrichmentProvider,
    ResearchProvider,
)
from .fullenrich import FullEnrichProvider
from .openrouter import OpenRouterResearchProvider


@lru_cache(maxsize=1)
def get_research_provider() -> ResearchProvider:
    return OpenRouterResearchProvider()


@lru_cache(maxsize=1)
def get_enrichment_provider() -> EnrichmentProvider:
    return FullEnrichProvider()


__all__ = [
    "AdapterError",
    "AdapterErrorKind",
    "EnrichmentProvider",
    "ResearchProvider",
    "get_research_provider",
    "get_enrichment_provider",
]
