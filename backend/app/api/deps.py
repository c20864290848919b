"""
Request-scoped collaborators for the routes.

Each is a FastAPI dependency so tests (and deployments) can substitute
providers, budgets, the event sink and the task dispatcher.
"""
from fastapi import Depends, Header
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..services.budget import BudgetGuard, enrichment_budget_guard, llm_budget_guard
from ..services.events import EventSink, get_event_sink
from ..services.providers import get_enrichment_provider, get_research_provider
from ..services.research import TaskDispatcher, celery_dispatcher

__all__ = [
    "current_user",
    "event_sink",
    "get_enrichment_budget",
    "get_enrichment_provider",
    "get_llm_budget",
    "get_research_provider",
    "get_task_dispatcher",
]


def current_user(x_user_id: str | None = Header(default=None)) -> str | None:
    # Authentication is handled upstream; we only record who asked
    return x_user_id


def get_llm_budget(db: Session = Depends(get_db)) -> BudgetGuard:
    return llm_budget_guard(db)


def get_enrichment_budget(db: Session = Depends(get_db)) -> BudgetGuard:
    return enrichment_budget_guard(db)


def get_task_dispatcher() -> TaskDispatcher:
    return celery_dispatcher


def event_sink() -> EventSink:
    return get_event_sink()
