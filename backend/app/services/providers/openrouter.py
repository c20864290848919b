# backend/app/services/providers/openrouter.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import openai
from pydantic import ValidationError

from .base import AdapterError, AdapterErrorKind, ResearchCompletion, ResearchProvider
from ..llm import get_llm_client, llm_call_slot
from ...schemas.canonical import CanonicalModel

logger = logging.getLogger(__name__)


def _parse_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def extract_json_object(raw: str | None) -> Optional[Dict[str, Any]]:
    """
    Parse a JSON object out of model output.

    Models often wrap the object in prose or an array, so we fall back to the
    outermost {...} block whenever the whole text is not itself an object.
    """
    if not raw:
        return None

    data = _parse_object(raw)
    if data is not None:
        return data

    start = raw.find("{")
    end = raw.rfind("}")
    if start == -1 or end <= start:
        return None
    return _parse_object(raw[start : end + 1])


def _kind_for_status(status_code: int | None) -> AdapterErrorKind:
    if status_code == 429:
        return AdapterErrorKind.RATE_LIMITED
    if status_code == 402:
        # OpenRouter answers 402 when the account is out of credits
        return AdapterErrorKind.INSUFFICIENT_CREDITS
    if status_code is not None and status_code >= 500:
        return AdapterErrorKind.PROVIDER_UNAVAILABLE
    return AdapterErrorKind.UNKNOWN


class OpenRouterResearchProvider(ResearchProvider):
    """
    Structured research through an OpenAI-compatible chat completions API.

    The raw completion is reduced to a JSON object and validated against the
    canonical model for the entity type. Anything that does not validate is
    an AdapterError(schema_invalid); tokens spent are still reported on it.
    """

    name = "openrouter"

    def __init__(self, client: Any = None) -> None:
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_llm_client()
        return self._client

    def complete_json(
        self,
        prompt: str,
        result_model: type[CanonicalModel],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        system_prompt: Optional[str] = None,
    ) -> ResearchCompletion:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            with llm_call_slot():
                response = self.client.chat.completions.create(
                    model=model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    response_format={"type": "json_object"},
                )
        except openai.RateLimitError as e:
            raise AdapterError(AdapterErrorKind.RATE_LIMITED, f"Rate limited by provider: {e}")
        except openai.APIConnectionError as e:
            # Includes APITimeoutError
            raise AdapterError(AdapterErrorKind.PROVIDER_UNAVAILABLE, f"Provider unreachable: {e}")
        except openai.APIStatusError as e:
            raise AdapterError(_kind_for_status(e.status_code), f"Provider error {e.status_code}: {e}")

        usage = getattr(response, "usage", None)
        tokens_used = getattr(usage, "total_tokens", None)
        model_used = getattr(response, "model", None) or model

        choices = getattr(response, "choices", None) or []
        raw = choices[0].message.content if choices else None
        if not raw:
            raise AdapterError(
                AdapterErrorKind.SCHEMA_INVALID,
                "No content in response",
                tokens_used=tokens_used,
            )

        data = extract_json_object(raw)
        if data is None:
            logger.warning(
                "Model output contained no JSON object",
                extra={"provider": self.name, "step": "parse"},
            )
            raise AdapterError(
                AdapterErrorKind.SCHEMA_INVALID,
                "Failed to parse JSON response",
                tokens_used=tokens_used,
            )

        try:
            # JSON-mode validation so strict typing applies to nested objects too
            result = result_model.model_validate_json(json.dumps(data))
        except ValidationError as e:
            logger.warning(
                "Model output failed validation",
                extra={"provider": self.name, "step": "validate"},
            )
            raise AdapterError(
                AdapterErrorKind.SCHEMA_INVALID,
                f"Response did not match {result_model.__name__}: {e}",
                tokens_used=tokens_used,
            )

        return ResearchCompletion(result=result, model_used=model_used, tokens_used=tokens_used)
