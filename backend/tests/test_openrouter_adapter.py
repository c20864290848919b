"""
Tests for the OpenRouter research adapter.

The OpenAI SDK client is replaced with a stub exposing
``chat.completions.create`` so no network is involved.
"""
import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from app.schemas.canonical import OrganizationResearch, RfpResearch
from app.services.providers.base import AdapterError, AdapterErrorKind
from app.services.providers.openrouter import OpenRouterResearchProvider, extract_json_object

from tests.fixtures.research_fixtures import RFP_RESULT


_REQUEST = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")


class StubCompletions:
    def __init__(self, content=None, error=None, tokens=42, model="anthropic/claude-3.5-sonnet"):
        self.content = content
        self.error = error
        self.tokens = tokens
        self.model = model
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))],
            usage=SimpleNamespace(total_tokens=self.tokens),
            model=self.model,
        )


def _provider(**kwargs):
    completions = StubCompletions(**kwargs)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenRouterResearchProvider(client=client), completions


def _complete(provider, result_model=OrganizationResearch):
    return provider.complete_json(
        "Research Acme",
        result_model,
        model="anthropic/claude-3.5-sonnet",
        temperature=0.3,
        max_tokens=4096,
        system_prompt="Respond with JSON.",
    )


class TestExtractJsonObject:
    """Salvaging a JSON object from model prose."""

    def test_plain_json(self):
        assert extract_json_object('{"a": 1}') == {"a": 1}

    def test_json_wrapped_in_prose(self):
        assert extract_json_object('Here is the result: {"a":1} Thanks!') == {"a": 1}

    def test_markdown_fence(self):
        assert extract_json_object('```json\n{"a": {"b": 2}}\n```') == {"a": {"b": 2}}

    def test_object_inside_array(self):
        assert extract_json_object('[{"a": 1}]') == {"a": 1}

    @pytest.mark.parametrize("raw", [None, "", "no json here", "[1, 2, 3]", "{not: valid}"])
    def test_unparseable_returns_none(self, raw):
        assert extract_json_object(raw) is None


class TestCompleteJson:
    def test_valid_result_with_accounting(self):
        provider, completions = _provider(
            content='Sure! {"company_name": "Acme", "employee_count": 50} Let me know.'
        )
        completion = _complete(provider)

        assert isinstance(completion.result, OrganizationResearch)
        assert completion.result.company_name == "Acme"
        assert completion.result.employee_count == 50
        assert completion.tokens_used == 42
        assert completion.model_used == "anthropic/claude-3.5-sonnet"

        assert completions.kwargs["response_format"] == {"type": "json_object"}
        assert completions.kwargs["messages"][0] == {"role": "system", "content": "Respond with JSON."}
        assert completions.kwargs["messages"][1]["content"] == "Research Acme"

    def test_nested_rfp_result(self):
        provider, _ = _provider(content=json.dumps(RFP_RESULT))
        completion = _complete(provider, RfpResearch)

        assert completion.result.competitor_analysis.likely_bidders[0].likelihood == "high"
        assert completion.result.sources[0].domain == "city.example"

    def test_string_for_integer_is_schema_invalid(self):
        provider, _ = _provider(content='{"employee_count": "50"}')
        with pytest.raises(AdapterError) as exc:
            _complete(provider)

        assert exc.value.kind == AdapterErrorKind.SCHEMA_INVALID
        assert exc.value.tokens_used == 42

    def test_missing_required_rfp_fields_is_schema_invalid(self):
        provider, _ = _provider(content='{"executive_summary": "short"}')
        with pytest.raises(AdapterError) as exc:
            _complete(provider, RfpResearch)
        assert exc.value.kind == AdapterErrorKind.SCHEMA_INVALID

    def test_no_json_is_schema_invalid(self):
        provider, _ = _provider(content="I could not find anything about this company.")
        with pytest.raises(AdapterError) as exc:
            _complete(provider)

        assert exc.value.kind == AdapterErrorKind.SCHEMA_INVALID
        assert exc.value.message == "Failed to parse JSON response"

    def test_empty_content_is_schema_invalid(self):
        provider, _ = _provider(content="")
        with pytest.raises(AdapterError) as exc:
            _complete(provider)
        assert exc.value.kind == AdapterErrorKind.SCHEMA_INVALID


class TestErrorMapping:
    """SDK exceptions become AdapterErrors with the matching kind."""

    def test_rate_limit(self):
        error = openai.RateLimitError(
            "Too many requests", response=httpx.Response(429, request=_REQUEST), body=None
        )
        provider, _ = _provider(error=error)
        with pytest.raises(AdapterError) as exc:
            _complete(provider)
        assert exc.value.kind == AdapterErrorKind.RATE_LIMITED

    def test_payment_required_is_insufficient_credits(self):
        error = openai.APIStatusError(
            "Payment required", response=httpx.Response(402, request=_REQUEST), body=None
        )
        provider, _ = _provider(error=error)
        with pytest.raises(AdapterError) as exc:
            _complete(provider)
        assert exc.value.kind == AdapterErrorKind.INSUFFICIENT_CREDITS

    def test_server_error_is_provider_unavailable(self):
        error = openai.APIStatusError(
            "Bad gateway", response=httpx.Response(502, request=_REQUEST), body=None
        )
        provider, _ = _provider(error=error)
        with pytest.raises(AdapterError) as exc:
            _complete(provider)
        assert exc.value.kind == AdapterErrorKind.PROVIDER_UNAVAILABLE

    def test_connection_error_is_provider_unavailable(self):
        provider, _ = _provider(error=openai.APIConnectionError(request=_REQUEST))
        with pytest.raises(AdapterError) as exc:
            _complete(provider)
        assert exc.value.kind == AdapterErrorKind.PROVIDER_UNAVAILABLE

    def test_error_message_is_truncated(self):
        error = openai.APIStatusError(
            "x" * 2000, response=httpx.Response(400, request=_REQUEST), body=None
        )
        provider, _ = _provider(error=error)
        with pytest.raises(AdapterError) as exc:
            _complete(provider)

        assert exc.value.kind == AdapterErrorKind.UNKNOWN
        assert len(exc.value.message) == 500
