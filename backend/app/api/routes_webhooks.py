import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.db import get_db
from ..schemas.enrichment import WebhookAck
from ..services.budget import BudgetGuard
from ..services.enrichment import handle_delivery
from ..services.providers.base import EnrichmentProvider
from ..services.webhooks import SIGNATURE_HEADER, verify_signature
from .deps import get_enrichment_budget, get_enrichment_provider

router = APIRouter(tags=["webhooks"])

settings = get_settings()
logger = logging.getLogger(__name__)


@router.post("/webhooks/fullenrich", response_model=WebhookAck)
async def fullenrich_webhook(
    request: Request,
    db: Session = Depends(get_db),
    provider: EnrichmentProvider = Depends(get_enrichment_provider),
    budget: BudgetGuard = Depends(get_enrichment_budget),
):
    """
    Receive a FullEnrich batch report.

    The signature covers the raw body, so it is checked before parsing.
    Deliveries for batches we never submitted are answered with 404.
    """
    body = await request.body()
    verify_signature(body, request.headers.get(SIGNATURE_HEADER), settings.FULLENRICH_WEBHOOK_SECRET)

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    batch = provider.normalize(payload)
    if not batch.external_job_id:
        raise HTTPException(status_code=400, detail="Missing enrichment id")

    # Settling jobs is blocking database work
    result = await asyncio.to_thread(handle_delivery, db, batch, budget)
    logger.info(
        "Webhook processed with status %s",
        result.status,
        extra={"provider": provider.name, "step": "webhook"},
    )
    return WebhookAck(
        processed=result.processed,
        status=result.status,
        credits_used=result.credits_used,
    )
