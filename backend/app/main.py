from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import get_settings
from .core.errors import JobConflict, ResearchError
from .core.logging import configure_logging
from .api.routes_enrichment import router as enrichment_router
from .api.routes_entities import router as entities_router
from .api.routes_research import router as research_router
from .api.routes_webhooks import router as webhooks_router
from .services.providers.base import AdapterError

configure_logging()
settings = get_settings()

app = FastAPI(title="CRM Research & Enrichment API")

# CORS:
# - In prod, FRONTEND_ORIGIN is required and we never fall back to "*".
# - In non-prod, wide-open CORS is only enabled if CORS_ALLOW_ALL_ORIGINS=True.
if settings.ENV.lower() == "prod":
    if not settings.FRONTEND_ORIGIN:
        raise RuntimeError(
            "FRONTEND_ORIGIN must be set in production, refusing to start with wide-open CORS."
        )
    origins = [o.strip() for o in settings.FRONTEND_ORIGIN.split(",") if o.strip()]
elif settings.CORS_ALLOW_ALL_ORIGINS or not settings.FRONTEND_ORIGIN:
    origins = ["*"]
else:
    origins = [o.strip() for o in settings.FRONTEND_ORIGIN.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    allow_credentials=False,
)


@app.exception_handler(ResearchError)
def research_error_handler(request: Request, exc: ResearchError):
    content = {"error": exc.message, "code": exc.code}
    if isinstance(exc, JobConflict) and exc.existing_job_id:
        content["jobId"] = str(exc.existing_job_id)
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(AdapterError)
def adapter_error_handler(request: Request, exc: AdapterError):
    # Provider failures outside a job (e.g. a manual poll)
    return JSONResponse(status_code=502, content={"error": exc.message, "code": exc.kind.value})


app.include_router(research_router, prefix=settings.API_PREFIX)
app.include_router(enrichment_router, prefix=settings.API_PREFIX)
app.include_router(entities_router, prefix=settings.API_PREFIX)
app.include_router(webhooks_router, prefix=settings.API_PREFIX)
