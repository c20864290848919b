# backend/app/services/bulk.py
"""
Sequential bulk campaigns over the HTTP API.

A campaign walks a list of targets one at a time, runs the single-entity
research or enrichment flow for each through the API, resolves the result
with a merge policy and applies the accepted fields. Cancellation is
cooperative: it is checked between targets and interrupts the pause
between them.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
import enum
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import UUID

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..core.config import get_settings
from ..core.errors import BudgetExhausted
from ..schemas.canonical import ContactEnrichmentResult, load_result
from .merge import MergePolicy, resolve_enrichment, resolve_research, select_applicable
from .providers.base import CAMPAIGN_FATAL_KINDS

logger = logging.getLogger(__name__)
settings = get_settings()

# Error codes that will fail every remaining target as well
STOP_CODES = frozenset({k.value for k in CAMPAIGN_FATAL_KINDS} | {BudgetExhausted.code})

ENTITY_PATHS = {
    "organization": "organizations",
    "person": "people",
}


class CampaignApiError(Exception):
    def __init__(self, status_code: int, message: str, code: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.code = code


def _raise_for_response(response: httpx.Response) -> Dict[str, Any]:
    if response.is_success:
        return response.json()

    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = body.get("error") or body.get("detail") or response.reason_phrase
    if not isinstance(message, str):
        message = str(message)
    raise CampaignApiError(response.status_code, message, body.get("code"))


class ResearchApiClient:
    """
    Thin client for the research and enrichment routes.

    Any ``httpx.Client`` works as transport, including FastAPI's TestClient.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        client: httpx.Client | None = None,
        api_prefix: str | None = None,
        timeout: float = 180.0,
    ):
        headers = {"X-API-Key": api_key} if api_key else {}
        self.client = client or httpx.Client(base_url=base_url or settings.APP_URL, timeout=timeout)
        self.client.headers.update(headers)
        self.prefix = settings.API_PREFIX if api_prefix is None else api_prefix

    def _url(self, path: str) -> str:
        return f"{self.prefix}{path}"

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    def _get(self, path: str, **params: Any) -> Dict[str, Any]:
        return _raise_for_response(self.client.get(self._url(path), params=params or None))

    def _post(self, path: str, payload: Dict[str, Any] | None = None) -> Dict[str, Any]:
        # Not retried: a repeated start would create a second job
        return _raise_for_response(self.client.post(self._url(path), json=payload))

    def get_entity(self, project_id: UUID, entity_type: str, entity_id: UUID) -> Dict[str, Any]:
        return self._get(f"/projects/{project_id}/{ENTITY_PATHS[entity_type]}/{entity_id}")

    def start_research(self, project_id: UUID, entity_type: str, entity_id: UUID) -> Dict[str, Any]:
        return self._post(
            f"/projects/{project_id}/research",
            {"entity_type": entity_type, "entity_id": str(entity_id), "auto_apply": False},
        )

    def apply_research(
        self, project_id: UUID, job_id: UUID | str, field_updates: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        return self._post(
            f"/projects/{project_id}/research/{job_id}/apply",
            {"job_id": str(job_id), "field_updates": field_updates},
        )

    def start_enrichment(self, project_id: UUID, person_id: UUID) -> Dict[str, Any]:
        return self._post(f"/projects/{project_id}/enrich", {"person_id": str(person_id)})

    def poll_enrichment(self, project_id: UUID, job_id: UUID | str) -> Dict[str, Any]:
        return self._post(f"/projects/{project_id}/enrich/{job_id}/poll")

    def apply_enrichment(
        self, project_id: UUID, job_id: UUID | str, field_updates: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        return self._post(
            f"/projects/{project_id}/enrich/apply",
            {"job_id": str(job_id), "field_updates": field_updates},
        )


@dataclass
class BulkTarget:
    entity_id: UUID
    name: Optional[str] = None


@dataclass
class TargetContext:
    """What a runner knows about a target before starting its job."""

    name: str
    snapshot: Dict[str, Any] = field(default_factory=dict)
    custom_field_names: List[str] = field(default_factory=list)


@dataclass
class TargetResult:
    entity_id: UUID
    name: str
    success: bool
    job_id: Optional[str] = None
    fields_updated: int = 0
    error: Optional[str] = None
    error_code: Optional[str] = None


class CampaignStatus(str, enum.Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class CampaignProgress:
    status: CampaignStatus
    total: int
    current_index: int
    completed_count: int
    failed_count: int
    current_target_name: Optional[str] = None
    results: List[TargetResult] = field(default_factory=list)


@dataclass
class CampaignSummary:
    attempted: int
    succeeded: int
    failed: int
    fields_updated: int
    failures: List[Dict[str, Optional[str]]]
    stop_reason: Optional[str] = None


class TargetRunner(ABC):
    """Runs the single-entity flow for one target of a campaign."""

    entity_type: str

    def __init__(
        self,
        client: ResearchApiClient,
        project_id: UUID,
        policy: MergePolicy = MergePolicy.FILL_EMPTY,
    ):
        self.client = client
        self.project_id = project_id
        self.policy = policy

    def load(self, target: BulkTarget, index: int) -> TargetContext:
        default_name = target.name or f"{self.entity_type.capitalize()} {index + 1}"
        try:
            entity = self.client.get_entity(self.project_id, self.entity_type, target.entity_id)
        except (CampaignApiError, httpx.HTTPError) as e:
            logger.warning(
                "Could not load %s snapshot: %s",
                self.entity_type,
                e,
                extra={"entity_id": str(target.entity_id), "step": "bulk_load"},
            )
            return TargetContext(name=default_name)
        return TargetContext(
            name=target.name or entity.get("name") or default_name,
            snapshot=entity.get("snapshot") or {},
            custom_field_names=list(entity.get("custom_field_names") or []),
        )

    def _failure(
        self, target: BulkTarget, name: str, error: str | None, code: str | None, job_id=None
    ) -> TargetResult:
        return TargetResult(
            entity_id=target.entity_id,
            name=name,
            success=False,
            job_id=job_id,
            error=error or "Unknown error",
            error_code=code,
        )

    @abstractmethod
    def run(self, target: BulkTarget, context: TargetContext) -> TargetResult:
        ...


class ResearchTargetRunner(TargetRunner):
    def __init__(self, client, project_id, entity_type: str = "organization", policy=MergePolicy.FILL_EMPTY):
        super().__init__(client, project_id, policy)
        self.entity_type = entity_type

    def run(self, target: BulkTarget, context: TargetContext) -> TargetResult:
        name = context.name
        try:
            job = self.client.start_research(self.project_id, self.entity_type, target.entity_id)["job"]
        except CampaignApiError as e:
            return self._failure(target, name, e.message, e.code)

        if job["status"] != "completed":
            return self._failure(target, name, job.get("error"), job.get("error_code"), job["id"])

        mappings = resolve_research(
            job.get("result") or {}, self.entity_type, context.snapshot, context.custom_field_names
        )
        selected = select_applicable(mappings, self.policy)
        fields_updated = 0
        if selected:
            try:
                applied = self.client.apply_research(
                    self.project_id, job["id"], [m.as_update() for m in selected]
                )
            except CampaignApiError as e:
                return self._failure(target, name, e.message, e.code, job["id"])
            fields_updated = applied["fields_updated"]

        return TargetResult(
            entity_id=target.entity_id,
            name=name,
            success=True,
            job_id=job["id"],
            fields_updated=fields_updated,
        )


class EnrichmentTargetRunner(TargetRunner):
    entity_type = "person"

    def __init__(
        self,
        client,
        project_id,
        policy=MergePolicy.FILL_EMPTY,
        min_confidence: float | None = None,
        poll_interval: float | None = None,
        max_polls: int | None = None,
        sleep: Callable[[float], Any] | None = None,
    ):
        super().__init__(client, project_id, policy)
        self.min_confidence = (
            settings.ENRICHMENT_MIN_CONFIDENCE if min_confidence is None else min_confidence
        )
        self.poll_interval = (
            settings.BULK_ENRICHMENT_POLL_SECONDS if poll_interval is None else poll_interval
        )
        self.max_polls = settings.BULK_ENRICHMENT_MAX_POLLS if max_polls is None else max_polls
        self.sleep = sleep or threading.Event().wait

    def _wait_for_terminal(self, job: Dict[str, Any]) -> Dict[str, Any]:
        polls = 0
        while job["status"] in ("pending", "running") and polls < self.max_polls:
            self.sleep(self.poll_interval)
            job = self.client.poll_enrichment(self.project_id, job["id"])
            polls += 1
        return job

    def run(self, target: BulkTarget, context: TargetContext) -> TargetResult:
        name = context.name
        try:
            started = self.client.start_enrichment(self.project_id, target.entity_id)
            if not started["jobs"]:
                skipped = (started.get("skipped") or [{}])[0]
                return self._failure(target, name, skipped.get("error"), None)
            job = self._wait_for_terminal(started["jobs"][0])
        except CampaignApiError as e:
            return self._failure(target, name, e.message, e.code)

        if job["status"] in ("pending", "running"):
            return self._failure(target, name, "Enrichment did not finish in time", "timeout", job["id"])
        if job["status"] != "completed":
            return self._failure(target, name, job.get("error"), job.get("error_code"), job["id"])

        result = load_result(ContactEnrichmentResult, job.get("result") or {})
        selected = select_applicable(
            resolve_enrichment(result, context.snapshot),
            self.policy,
            confidence_score=result.confidence_score,
            min_confidence=self.min_confidence,
        )
        fields_updated = 0
        if selected:
            try:
                applied = self.client.apply_enrichment(
                    self.project_id, job["id"], [m.as_update() for m in selected]
                )
            except CampaignApiError as e:
                return self._failure(target, name, e.message, e.code, job["id"])
            fields_updated = applied["fields_updated"]

        return TargetResult(
            entity_id=target.entity_id,
            name=name,
            success=True,
            job_id=job["id"],
            fields_updated=fields_updated,
        )


class BulkCampaign:
    def __init__(
        self,
        runner: TargetRunner,
        targets: Sequence[BulkTarget],
        *,
        inter_request_delay: float | None = None,
        on_progress: Callable[[CampaignProgress], Any] | None = None,
        sleep: Callable[[float], Any] | None = None,
    ):
        self.runner = runner
        self.targets = list(targets)
        self.inter_request_delay = (
            settings.BULK_INTER_REQUEST_DELAY_MS / 1000.0
            if inter_request_delay is None
            else inter_request_delay
        )
        self.on_progress = on_progress
        self._cancelled = threading.Event()
        # Waiting on the cancel event lets cancel() cut the pause short
        self._sleep = sleep or self._cancelled.wait
        self._lock = threading.Lock()
        self._progress = CampaignProgress(
            status=CampaignStatus.IDLE,
            total=len(self.targets),
            current_index=0,
            completed_count=0,
            failed_count=0,
        )
        self.stop_reason: Optional[str] = None

    @property
    def progress(self) -> CampaignProgress:
        with self._lock:
            return replace(self._progress, results=list(self._progress.results))

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def _publish(self) -> None:
        if self.on_progress is not None:
            self.on_progress(self.progress)

    def _record(self, index: int, result: TargetResult) -> None:
        with self._lock:
            self._progress.current_index = index + 1
            self._progress.results.append(result)
            if result.success:
                self._progress.completed_count += 1
            else:
                self._progress.failed_count += 1

    def _set_current(self, name: Optional[str]) -> None:
        with self._lock:
            self._progress.current_target_name = name

    def _set_status(self, status: CampaignStatus) -> None:
        with self._lock:
            self._progress.status = status

    def run(self) -> CampaignSummary:
        self._set_status(CampaignStatus.PROCESSING)
        self._publish()
        logger.info(
            "Starting bulk %s campaign with %d targets",
            self.runner.entity_type,
            len(self.targets),
            extra={"project_id": str(self.runner.project_id), "step": "bulk_start"},
        )

        last = len(self.targets) - 1
        for index, target in enumerate(self.targets):
            if self.cancelled:
                break

            context = self.runner.load(target, index)
            self._set_current(context.name)
            self._publish()
            try:
                result = self.runner.run(target, context)
            except httpx.HTTPError as e:
                result = TargetResult(
                    entity_id=target.entity_id,
                    name=context.name,
                    success=False,
                    error=str(e) or "Request failed",
                    error_code="provider_unavailable",
                )
            if not result.success:
                logger.warning(
                    "Bulk target failed: %s",
                    result.error,
                    extra={"entity_id": str(target.entity_id), "step": "bulk_target"},
                )

            self._record(index, result)
            self._publish()

            if result.error_code in STOP_CODES:
                self.stop_reason = result.error_code
                break

            if index < last and not self.cancelled:
                self._sleep(self.inter_request_delay)

        self._set_current(None)
        self._set_status(CampaignStatus.CANCELLED if self.cancelled else CampaignStatus.COMPLETED)
        self._publish()
        summary = self.summary()
        logger.info(
            "Bulk campaign finished: %d succeeded, %d failed",
            summary.succeeded,
            summary.failed,
            extra={"project_id": str(self.runner.project_id), "step": "bulk_done"},
        )
        return summary

    def summary(self) -> CampaignSummary:
        progress = self.progress
        return CampaignSummary(
            attempted=len(progress.results),
            succeeded=progress.completed_count,
            failed=progress.failed_count,
            fields_updated=sum(r.fields_updated for r in progress.results),
            failures=[{"name": r.name, "error": r.error} for r in progress.results if not r.success],
            stop_reason=self.stop_reason,
        )
