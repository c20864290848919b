from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache
from threading import BoundedSemaphore
from typing import Iterator

from openai import OpenAI

from ..core.config import Settings, get_settings

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


@lru_cache(maxsize=1)
def _call_slots() -> BoundedSemaphore:
    return BoundedSemaphore(get_settings().LLM_MAX_CONCURRENCY)


@contextmanager
def llm_call_slot() -> Iterator[None]:
    """
    Hold one of the process-wide LLM_MAX_CONCURRENCY slots for a provider call.

    Research runs in request threads and Celery workers alike, so the bound
    is a thread semaphore rather than an asyncio one.
    """
    slots = _call_slots()
    with slots:
        yield


def build_llm_client(settings: Settings) -> OpenAI:
    """
    OpenRouter when OPENROUTER_API_KEY is set, plain OpenAI otherwise.

    SDK retries are off: a failed completion fails the job, and the job is
    what gets retried.
    """
    if settings.OPENROUTER_API_KEY:
        return OpenAI(
            base_url=OPENROUTER_BASE_URL,
            api_key=settings.OPENROUTER_API_KEY.strip(),
            timeout=settings.LLM_TIMEOUT_SECONDS,
            max_retries=0,
            default_headers={
                "HTTP-Referer": settings.FRONTEND_ORIGIN or settings.APP_URL,
                "X-Title": "CRM Research",
            },
        )

    if settings.OPENAI_API_KEY:
        return OpenAI(
            api_key=settings.OPENAI_API_KEY.strip(),
            timeout=settings.LLM_TIMEOUT_SECONDS,
            max_retries=0,
        )

    raise RuntimeError(
        "No LLM API key configured. Set either OPENROUTER_API_KEY or OPENAI_API_KEY."
    )


@lru_cache(maxsize=1)
def get_llm_client() -> OpenAI:
    return build_llm_client(get_settings())
