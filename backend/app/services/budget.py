# backend/app/services/budget.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import threading
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.errors import BudgetExhausted
from ..models.usage import ProviderUsageLog

logger = logging.getLogger(__name__)

LLM_PROVIDER = "openrouter"
ENRICHMENT_PROVIDER = "fullenrich"

# One lock per metered provider, shared by every guard in this process.
# Cross-process consistency comes from the ledger table itself.
_PROVIDER_LOCKS: Dict[str, threading.Lock] = {
    LLM_PROVIDER: threading.Lock(),
    ENRICHMENT_PROVIDER: threading.Lock(),
}


@dataclass
class BudgetStatus:
    allowed: bool
    used: int
    remaining: Optional[int]
    limit: Optional[int]


class BudgetGuard:
    """
    Usage budget for one metered provider, backed by provider_usage_log.

    ``limit=None`` means unmetered: checks always pass but usage is still
    recorded. Calls are allowed while ``used < limit - safety_buffer``.
    """

    def __init__(
        self,
        db: Session,
        provider: str,
        limit: Optional[int],
        safety_buffer: int = 0,
        window: Optional[timedelta] = None,
        lock: Optional[threading.Lock] = None,
    ):
        self.db = db
        self.provider = provider
        self.limit = limit
        self.safety_buffer = safety_buffer
        self.window = window
        self._lock = lock or _PROVIDER_LOCKS.setdefault(provider, threading.Lock())

    def used(self) -> int:
        query = self.db.query(func.coalesce(func.sum(ProviderUsageLog.units), 0)).filter(
            ProviderUsageLog.provider == self.provider
        )
        if self.window is not None:
            query = query.filter(ProviderUsageLog.created_at >= datetime.utcnow() - self.window)
        return int(query.scalar() or 0)

    def check(self) -> BudgetStatus:
        with self._lock:
            used = self.used()
        if self.limit is None:
            return BudgetStatus(allowed=True, used=used, remaining=None, limit=None)
        return BudgetStatus(
            allowed=used < self.limit - self.safety_buffer,
            used=used,
            remaining=max(self.limit - used, 0),
            limit=self.limit,
        )

    def ensure_available(self) -> BudgetStatus:
        status = self.check()
        if not status.allowed:
            logger.warning(
                "Usage budget exhausted",
                extra={"provider": self.provider, "step": "budget_check"},
            )
            raise BudgetExhausted(self.provider, status.used, self.limit or 0)
        return status

    def record(
        self,
        units: Optional[int],
        project_id: Optional[UUID] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not units:
            return
        with self._lock:
            self.db.add(
                ProviderUsageLog(
                    provider=self.provider,
                    project_id=project_id,
                    units=int(units),
                    meta=meta,
                )
            )
            self.db.commit()


def _window() -> Optional[timedelta]:
    hours = get_settings().BUDGET_WINDOW_HOURS
    return timedelta(hours=hours) if hours else None


def llm_budget_guard(db: Session) -> BudgetGuard:
    settings = get_settings()
    return BudgetGuard(
        db,
        LLM_PROVIDER,
        limit=settings.LLM_TOKEN_BUDGET,
        safety_buffer=settings.BUDGET_SAFETY_BUFFER,
        window=_window(),
    )


def enrichment_budget_guard(db: Session) -> BudgetGuard:
    settings = get_settings()
    return BudgetGuard(
        db,
        ENRICHMENT_PROVIDER,
        limit=settings.FULLENRICH_CREDIT_BUDGET,
        safety_buffer=settings.BUDGET_SAFETY_BUFFER,
        window=_window(),
    )
