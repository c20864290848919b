# backend/app/services/providers/fullenrich.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError
from tenacity import (
    retry,
    wait_exponential,
    stop_after_attempt,
    retry_if_exception_type,
)

from .base import (
    AdapterError,
    AdapterErrorKind,
    ContactHint,
    EnrichmentProvider,
    truncate_error,
)
from ...core.config import get_settings
from ...schemas.canonical import (
    ContactCandidate,
    ContactEnrichmentResult,
    EnrichmentBatch,
    EnrichmentCorrelation,
    Location,
)

settings = get_settings()
logger = logging.getLogger(__name__)

ENRICH_FIELDS = ["contact.emails", "contact.phones"]

# FullEnrich job status -> (our status, error kind, default message)
_PROVIDER_STATUSES: Dict[str, Tuple[str, Optional[AdapterErrorKind], Optional[str]]] = {
    "CREATED": ("pending", None, None),
    "IN_PROGRESS": ("running", None, None),
    "FINISHED": ("completed", None, None),
    "CANCELED": ("failed", AdapterErrorKind.CANCELED, "Enrichment canceled"),
    "CREDITS_INSUFFICIENT": ("failed", AdapterErrorKind.INSUFFICIENT_CREDITS, "Insufficient credits"),
    "RATE_LIMIT": ("failed", AdapterErrorKind.RATE_LIMITED, "Rate limit exceeded"),
    # Not terminal; the stale-job sweep fails it if it never resolves
    "UNKNOWN": ("running", None, None),
}

# Simplified / poll-response statuses
_SIMPLE_STATUSES: Dict[str, str] = {
    "pending": "pending",
    "processing": "running",
    "completed": "completed",
    "failed": "failed",
}


def map_provider_status(
    raw_status: str | None,
    error: str | None = None,
) -> Tuple[str, Optional[AdapterErrorKind], Optional[str]]:
    """
    Map a provider status to (status, error kind, error message).

    Accepts both the upper-case v1 vocabulary and the lower-case simplified one.
    """
    raw = (raw_status or "UNKNOWN").strip()
    if raw.upper() in _PROVIDER_STATUSES:
        status, kind, default_message = _PROVIDER_STATUSES[raw.upper()]
        if status != "failed":
            return status, None, None
        if kind is AdapterErrorKind.CANCELED:
            return status, kind, truncate_error(error or default_message)
        return status, kind, default_message

    status = _SIMPLE_STATUSES.get(raw.lower())
    if status is None:
        return "running", None, None
    if status == "failed":
        return status, AdapterErrorKind.UNKNOWN, truncate_error(error or "Enrichment failed")
    return status, None, None


def _parse_correlation(custom: Any) -> Optional[EnrichmentCorrelation]:
    if not isinstance(custom, dict):
        return None
    try:
        return EnrichmentCorrelation.model_validate(custom)
    except ValidationError:
        logger.warning(
            "Ignoring malformed correlation payload on enrichment record",
            extra={"provider": "fullenrich", "step": "normalize"},
        )
        return None


def _parse_location(raw: Any) -> Optional[Location]:
    if not isinstance(raw, dict):
        return None
    location = Location(
        city=raw.get("city") or None,
        state=raw.get("state") or None,
        country=raw.get("country") or None,
    )
    if not (location.city or location.state or location.country):
        return None
    return location


def _first_of_type(candidates: List[ContactCandidate], kind: str) -> Optional[str]:
    for c in candidates:
        if c.type == kind:
            return c.value
    return None


def _record_error(record: Dict[str, Any]) -> Optional[str]:
    error = record.get("error")
    if not error:
        return None
    if not isinstance(error, str):
        return "Enrichment failed"
    return truncate_error(error)


def _normalize_v1_record(record: Dict[str, Any]) -> ContactEnrichmentResult:
    contact = record.get("contact") or {}
    profile = contact.get("profile") or {}

    phones = [
        ContactCandidate(value=p["number"], type=p.get("type") or "mobile", status=p.get("status"))
        for p in contact.get("phones") or []
        if isinstance(p, dict) and p.get("number")
    ]
    emails = [
        ContactCandidate(value=e["email"], type=e.get("type"), status=e.get("status"))
        for e in contact.get("emails") or []
        if isinstance(e, dict) and e.get("email")
    ]
    known = {e.value for e in emails}
    for e in contact.get("personal_emails") or []:
        value = e.get("email") if isinstance(e, dict) else e
        if value and value not in known:
            emails.append(ContactCandidate(value=value, type="personal", status=e.get("status") if isinstance(e, dict) else None))
            known.add(value)

    return ContactEnrichmentResult(
        email=contact.get("most_probable_email") or (emails[0].value if emails else None),
        work_email=_first_of_type(emails, "work"),
        personal_email=contact.get("most_probable_personal_email") or _first_of_type(emails, "personal"),
        phone=contact.get("most_probable_phone") or (phones[0].value if phones else None),
        mobile_phone=_first_of_type(phones, "mobile"),
        work_phone=_first_of_type(phones, "work"),
        emails=emails,
        phones=phones,
        first_name=profile.get("first_name"),
        last_name=profile.get("last_name"),
        full_name=profile.get("full_name"),
        job_title=profile.get("job_title") or profile.get("headline"),
        company=profile.get("company"),
        linkedin_url=profile.get("linkedin_url"),
        location=_parse_location(profile.get("location")),
        confidence_score=None,
        correlation=_parse_correlation(record.get("custom")),
        error=_record_error(record),
    )


def _normalize_simple_record(record: Dict[str, Any]) -> ContactEnrichmentResult:
    emails: List[ContactCandidate] = []
    for key, kind in (("email", None), ("work_email", "work"), ("personal_email", "personal")):
        value = record.get(key)
        if value and value not in {e.value for e in emails}:
            emails.append(ContactCandidate(value=value, type=kind))
    phones: List[ContactCandidate] = []
    for key, kind in (("phone", None), ("mobile_phone", "mobile"), ("work_phone", "work")):
        value = record.get(key)
        if value and value not in {p.value for p in phones}:
            phones.append(ContactCandidate(value=value, type=kind))

    confidence = record.get("confidence_score")
    return ContactEnrichmentResult(
        email=record.get("email"),
        work_email=record.get("work_email"),
        personal_email=record.get("personal_email"),
        phone=record.get("phone"),
        mobile_phone=record.get("mobile_phone"),
        work_phone=record.get("work_phone"),
        emails=emails,
        phones=phones,
        first_name=record.get("first_name"),
        last_name=record.get("last_name"),
        full_name=record.get("full_name"),
        job_title=record.get("job_title"),
        company=record.get("company_name"),
        linkedin_url=record.get("linkedin_url"),
        location=_parse_location(record.get("location")),
        confidence_score=float(confidence) if isinstance(confidence, (int, float)) else None,
        correlation=_parse_correlation(record.get("custom")),
        error=_record_error(record),
    )


def normalize_enrichment_payload(payload: Dict[str, Any]) -> EnrichmentBatch:
    """
    Normalise a webhook delivery or poll response into an EnrichmentBatch.

    Two shapes are accepted:
    - FullEnrich v1: {enrichment_id|id, status: FINISHED|..., cost: {credits}, datas: [...]}
    - simplified:    {job_id, status: completed|failed, results: [...], credits_used}
    """
    is_v1 = "datas" in payload or "enrichment_id" in payload or "cost" in payload
    if not is_v1 and "job_id" not in payload and "results" not in payload:
        is_v1 = str(payload.get("status", "")).upper() in _PROVIDER_STATUSES

    if is_v1:
        external_id = payload.get("enrichment_id") or payload.get("id") or ""
        raw_records = payload.get("datas") or []
        credits = (payload.get("cost") or {}).get("credits")
        normalize_record = _normalize_v1_record
    else:
        external_id = payload.get("job_id") or payload.get("id") or ""
        raw_records = payload.get("results") or []
        credits = payload.get("credits_used")
        normalize_record = _normalize_simple_record

    status, kind, message = map_provider_status(payload.get("status"), payload.get("error"))

    results: List[ContactEnrichmentResult] = []
    if status == "completed":
        results = [normalize_record(r) for r in raw_records if isinstance(r, dict)]

    return EnrichmentBatch(
        external_job_id=str(external_id),
        status=status,
        error_kind=kind.value if kind else None,
        error=message,
        credits_used=int(credits) if isinstance(credits, (int, float)) else None,
        results=results,
    )


def _kind_for_status(status_code: int) -> AdapterErrorKind:
    if status_code == 429:
        return AdapterErrorKind.RATE_LIMITED
    if status_code == 402:
        return AdapterErrorKind.INSUFFICIENT_CREDITS
    if status_code >= 500:
        return AdapterErrorKind.PROVIDER_UNAVAILABLE
    return AdapterErrorKind.UNKNOWN


def _run(coro):
    # Callers are FastAPI sync routes and Celery workers
    try:
        return asyncio.run(coro)
    except RuntimeError:
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            return loop.run_until_complete(coro)
        finally:
            loop.close()


class FullEnrichProvider(EnrichmentProvider):
    """
    FullEnrich bulk contact enrichment.

    Enrichment is asynchronous on the provider side: ``submit`` returns an
    enrichment id immediately and results arrive by webhook (or by polling
    ``fetch``). Each submitted contact carries an EnrichmentCorrelation in
    the provider's ``custom`` passthrough so results can be matched back.
    """

    name = "fullenrich"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.FULLENRICH_API_KEY
        self.base_url = (base_url or settings.FULLENRICH_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.FULLENRICH_TIMEOUT_SECONDS
        self._transport = transport

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "accept": "application/json",
        }

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(httpx.HTTPError),
        reraise=True,
    )
    async def _request(
        self,
        method: str,
        path: str,
        json: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._auth_headers(),
                json=json,
            )

        # 5xx => let Tenacity retry; 4xx are answers, not transient failures
        if resp.status_code >= 500:
            resp.raise_for_status()

        if resp.status_code >= 400:
            logger.warning(
                "FullEnrich %s %s returned %s: %s",
                method,
                path,
                resp.status_code,
                resp.text[:500],
                extra={"provider": self.name, "step": "request"},
            )
            raise AdapterError(
                _kind_for_status(resp.status_code),
                f"FullEnrich API error: {resp.status_code}",
            )

        return resp.json() or {}

    def _call(self, method: str, path: str, json: Dict[str, Any] | None = None) -> Dict[str, Any]:
        if not self.api_key:
            raise AdapterError(AdapterErrorKind.PROVIDER_UNAVAILABLE, "FULLENRICH_API_KEY is not configured")
        try:
            return _run(self._request(method, path, json=json))
        except httpx.HTTPError as e:
            raise AdapterError(AdapterErrorKind.PROVIDER_UNAVAILABLE, f"FullEnrich unreachable: {e}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(
        self,
        batch_name: str,
        contacts: List[Tuple[ContactHint, EnrichmentCorrelation]],
        webhook_url: Optional[str] = None,
    ) -> str:
        payload: Dict[str, Any] = {
            "name": batch_name,
            "data": [
                {
                    "first_name": hint.get("first_name"),
                    "last_name": hint.get("last_name"),
                    "domain": hint.get("domain"),
                    "company_name": hint.get("company_name"),
                    "linkedin_url": hint.get("linkedin_url"),
                    "enrich_fields": ENRICH_FIELDS,
                    "custom": correlation.model_dump(mode="json"),
                }
                for hint, correlation in contacts
            ],
        }
        if webhook_url:
            payload["webhook_url"] = webhook_url

        data = self._call("POST", "/contact/enrich/bulk", json=payload)
        enrichment_id = data.get("enrichment_id")
        if not enrichment_id:
            raise AdapterError(AdapterErrorKind.UNKNOWN, "Invalid response from FullEnrich API: missing enrichment_id")
        return str(enrichment_id)

    def fetch(self, external_job_id: str) -> EnrichmentBatch:
        data = self._call("GET", f"/contact/enrich/bulk/{external_job_id}")
        batch = normalize_enrichment_payload(data)
        if not batch.external_job_id:
            batch.external_job_id = external_job_id
        return batch

    def normalize(self, payload: Dict[str, Any]) -> EnrichmentBatch:
        return normalize_enrichment_payload(payload)
