"""In-process stand-ins for the providers, event sink and task dispatcher."""
import json
from typing import Any, Dict, List, Optional

from app.schemas.canonical import EnrichmentBatch
from app.services.events import AutomationEvent, EventSink
from app.services.providers.base import (
    AdapterError,
    EnrichmentProvider,
    ResearchCompletion,
    ResearchProvider,
)
from app.services.providers.fullenrich import normalize_enrichment_payload


class FakeResearchProvider(ResearchProvider):
    """Returns queued results (dicts) or raises queued AdapterErrors, in order."""

    name = "fake-llm"

    def __init__(self, responses: Optional[List[Any]] = None, tokens_used: int = 100):
        self.responses = list(responses or [])
        self.tokens_used = tokens_used
        self.calls: List[Dict[str, Any]] = []

    def complete_json(self, prompt, result_model, *, model, temperature, max_tokens, system_prompt=None):
        self.calls.append(
            {
                "prompt": prompt,
                "result_model": result_model,
                "model": model,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "system_prompt": system_prompt,
            }
        )
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        result = result_model.model_validate_json(json.dumps(response))
        return ResearchCompletion(result=result, model_used="test/model", tokens_used=self.tokens_used)


class FakeEnrichmentProvider(EnrichmentProvider):
    name = "fake-enrich"

    def __init__(self, external_id: str = "enr-1"):
        self.external_id = external_id
        self.submissions: List[Dict[str, Any]] = []
        self.submit_error: Optional[AdapterError] = None
        self.batches: Dict[str, EnrichmentBatch] = {}
        self.fetches: List[str] = []

    def submit(self, batch_name, contacts, webhook_url=None):
        self.submissions.append(
            {"batch_name": batch_name, "contacts": list(contacts), "webhook_url": webhook_url}
        )
        if self.submit_error is not None:
            raise self.submit_error
        return self.external_id

    def fetch(self, external_job_id):
        self.fetches.append(external_job_id)
        return self.batches.get(
            external_job_id,
            EnrichmentBatch(external_job_id=external_job_id, status="running"),
        )

    def normalize(self, payload):
        return normalize_enrichment_payload(payload)


class RecordingEventSink(EventSink):
    def __init__(self):
        self.events: List[AutomationEvent] = []

    def emit(self, event: AutomationEvent) -> None:
        self.events.append(event)


class RecordingDispatcher:
    def __init__(self, error: Optional[Exception] = None):
        self.dispatched = []
        self.error = error

    def __call__(self, job_id):
        if self.error is not None:
            raise self.error
        self.dispatched.append(job_id)

