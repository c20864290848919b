from pydantic_settings import BaseSettings
from pydantic import AnyUrl
from functools import lru_cache


class Settings(BaseSettings):
    # core
    ENV: str = "dev"
    API_PREFIX: str = "/api"
    # Public base URL of this API, used to build provider webhook URLs
    APP_URL: str = "http://localhost:8000"

    # database & redis
    DATABASE_URL: AnyUrl
    # Keep this as a plain string so redis:// URLs are always accepted
    REDIS_URL: str

    # auth / security
    API_AUTH_KEY: str | None = None
    FRONTEND_ORIGIN: str | None = None
    # Explicit debug-only switch for wide-open CORS in non-prod envs
    CORS_ALLOW_ALL_ORIGINS: bool = False

    # llm (structured research)
    OPENROUTER_API_KEY: str | None = None
    OPENAI_API_KEY: str | None = None  # Used only when OpenRouter is not configured
    LLM_MODEL: str = "anthropic/claude-3.5-sonnet"
    LLM_TEMPERATURE: float = 0.3
    LLM_MAX_TOKENS: int = 4096
    LLM_TIMEOUT_SECONDS: float = 120.0
    # Hard cap on concurrent LLM calls per process
    LLM_MAX_CONCURRENCY: int = 4

    # RFP research runs in the background with a longer, cooler completion
    RFP_RESEARCH_MODEL: str = "anthropic/claude-3.5-sonnet"
    RFP_RESEARCH_TEMPERATURE: float = 0.2
    RFP_RESEARCH_MAX_TOKENS: int = 8192

    # Contact discovery suggests people at an organization without storing a job
    CONTACT_DISCOVERY_TEMPERATURE: float = 0.3
    CONTACT_DISCOVERY_MAX_TOKENS: int = 4096
    CONTACT_DISCOVERY_MAX_RESULTS: int = 25

    # contact enrichment
    FULLENRICH_API_KEY: str | None = None
    FULLENRICH_BASE_URL: str = "https://app.fullenrich.com/api/v2"
    FULLENRICH_TIMEOUT_SECONDS: int = 30
    FULLENRICH_WEBHOOK_SECRET: str | None = None
    # Enrichment results scored below this are never applied
    ENRICHMENT_MIN_CONFIDENCE: float = 0.5

    # usage budgets (None = unmetered)
    LLM_TOKEN_BUDGET: int | None = None
    FULLENRICH_CREDIT_BUDGET: int | None = None
    BUDGET_SAFETY_BUFFER: int = 0
    # Rolling window for budget accounting; None counts all recorded usage
    BUDGET_WINDOW_HOURS: int | None = None

    # bulk campaigns
    BULK_INTER_REQUEST_DELAY_MS: int = 500
    BULK_ENRICHMENT_POLL_SECONDS: float = 5.0
    BULK_ENRICHMENT_MAX_POLLS: int = 60

    # reconciliation of jobs stuck in running/pending
    RESEARCH_STALE_AFTER_MINUTES: int = 30
    ENRICHMENT_STALE_AFTER_MINUTES: int = 1440

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
