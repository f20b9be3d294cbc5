from __future__ import annotations

from types import SimpleNamespace

import allure
import httpx
import openai
import pytest

from deal_pulse.config import AiSettings
from deal_pulse.intelligence.capabilities import (
    CLASSIFY_PREVIEW_CHARS,
    DealIntelligence,
)
from deal_pulse.intelligence.client import OpenAICompletionClient
from deal_pulse.intelligence.schemas import (
    CLASSIFICATION_FALLBACK,
    EMAIL_ANALYSIS_FALLBACK,
    THREAD_BLOCKER_FALLBACK,
)
from tests.fakes import FakeCompletionClient

pytestmark = [
    allure.epic("AI Enrichment"),
    allure.feature("Structured Output"),
]


def _connection_error() -> openai.APIConnectionError:
    return openai.APIConnectionError(request=httpx.Request("POST", "https://api.example.com"))


def test_structured_capabilities_validate_bare_json_only() -> None:
    client = FakeCompletionClient(
        '{"workstream": "Finance", "confidence": 80, "reasoning": "Model"}',
        '```json\n{"workstream": "Legal", "confidence": 90}\n```',
        'Result: {"workstream": "Legal", "confidence": 90}',
    )
    intelligence = DealIntelligence(client)

    assert intelligence.classify(name="doc", content="text").workstream == "Finance"
    assert intelligence.classify(name="doc", content="text") == CLASSIFICATION_FALLBACK
    assert intelligence.classify(name="doc", content="text") == CLASSIFICATION_FALLBACK
    assert all(call["json_response"] for call in client.calls)


def test_structured_capabilities_fall_back_on_bad_output() -> None:
    intelligence = DealIntelligence(
        FakeCompletionClient(
            "not json",
            '{"sentiment": "furious", "is_blocker": false}',
            _connection_error(),
        ),
    )

    assert intelligence.classify(name="doc", content="text") == CLASSIFICATION_FALLBACK
    assert (
        intelligence.analyze_sentiment(subject="s", sender="a@example.com", content="c")
        == EMAIL_ANALYSIS_FALLBACK
    )
    assert intelligence.detect_risks(name="doc", content="text") == []


def test_thread_blocker_without_messages_skips_completion() -> None:
    client = FakeCompletionClient()

    assert DealIntelligence(client).detect_thread_blocker([]) == THREAD_BLOCKER_FALLBACK
    assert client.calls == []


def test_summarize_propagates_backend_errors() -> None:
    intelligence = DealIntelligence(FakeCompletionClient(_connection_error()))

    with pytest.raises(openai.APIConnectionError):
        intelligence.summarize(name="doc", content="text")


def test_content_is_truncated_per_capability() -> None:
    client = FakeCompletionClient(
        "summary",
        '{"workstream": "Finance", "confidence": 70}',
    )
    intelligence = DealIntelligence(client, AiSettings(document_max_chars=100))

    intelligence.summarize(name="doc", content="x" * 500)
    classification = intelligence.classify(name="doc", content="y" * 5000)

    assert "x" * 100 in client.calls[0]["prompt"]
    assert "x" * 101 not in client.calls[0]["prompt"]
    assert client.calls[0]["max_tokens"] == 500
    assert client.calls[0]["temperature"] == 0.5
    assert "y" * CLASSIFY_PREVIEW_CHARS in client.calls[1]["prompt"]
    assert "y" * (CLASSIFY_PREVIEW_CHARS + 1) not in client.calls[1]["prompt"]
    assert client.calls[1]["temperature"] == 0.2
    assert classification.workstream == "Finance"
    assert classification.reasoning == ""


def test_openai_client_requires_api_key() -> None:
    with pytest.raises(ValueError, match="API_KEY"):
        OpenAICompletionClient(AiSettings(api_key=None))


def test_openai_client_requests_json_object_format(monkeypatch: pytest.MonkeyPatch) -> None:
    requests: list[dict[str, object]] = []

    def _create(**kwargs: object) -> SimpleNamespace:
        requests.append(kwargs)
        message = SimpleNamespace(content='{"workstream": "Legal"}')
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    client = OpenAICompletionClient(AiSettings(api_key="test-key", model="gpt-test"))
    monkeypatch.setattr(client._client.chat.completions, "create", _create)

    structured = client.complete(
        system="s",
        prompt="p",
        max_tokens=10,
        temperature=0.1,
        json_response=True,
    )
    plain = client.complete(system="s", prompt="p", max_tokens=10, temperature=0.1)

    assert structured == '{"workstream": "Legal"}'
    assert plain == '{"workstream": "Legal"}'
    assert requests[0]["response_format"] == {"type": "json_object"}
    assert requests[0]["model"] == "gpt-test"
    assert "response_format" not in requests[1]
