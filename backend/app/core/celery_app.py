from celery import Celery
from celery.schedules import crontab

from .config import get_settings
from .logging import configure_logging

settings = get_settings()
configure_logging()

celery_app = Celery(
    "crm_research",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_routes={"app.services.research.run_rfp_research_job": {"queue": "research"}},
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    imports=(
        "app.services.research",
        "app.services.enrichment",
        "app.services.reconciliation",
    ),
    beat_schedule={
        # Jobs whose worker died never reach a terminal state on their own
        "fail-stale-jobs": {
            "task": "app.services.reconciliation.fail_stale_jobs",
            "schedule": crontab(minute="*/10"),
        },
        # Webhook deliveries can be lost; poll the provider for anything still open
        "poll-pending-enrichment-jobs": {
            "task": "app.services.enrichment.poll_pending_enrichment_jobs",
            "schedule": crontab(minute="*/5"),
        },
    },
)
