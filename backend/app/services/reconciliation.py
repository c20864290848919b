from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Dict, Optional

from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.db import SessionLocal
from .enrichment import enrichment_store
from .research import research_store

logger = logging.getLogger(__name__)
settings = get_settings()


def fail_stale_jobs_in(db: Session, now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Fail jobs that stayed pending/running past their allowed age.

    A worker that dies mid-job never writes a terminal state, and a
    provider webhook can be lost; both would otherwise stay open forever.
    """
    research_failed = research_store(db).fail_stale(
        timedelta(minutes=settings.RESEARCH_STALE_AFTER_MINUTES), now=now
    )
    enrichment_failed = enrichment_store(db).fail_stale(
        timedelta(minutes=settings.ENRICHMENT_STALE_AFTER_MINUTES), now=now
    )
    return {"research": research_failed, "enrichment": enrichment_failed}


@celery_app.task(name="app.services.reconciliation.fail_stale_jobs")
def fail_stale_jobs() -> Dict[str, int]:
    db: Session = SessionLocal()
    try:
        counts = fail_stale_jobs_in(db)
        if any(counts.values()):
            logger.warning(
                "Failed stale jobs: %s",
                counts,
                extra={"step": "reconciliation"},
            )
        else:
            logger.info(
                "No stale jobs found",
                extra={"step": "reconciliation"},
            )
        return counts
    finally:
        db.close()
