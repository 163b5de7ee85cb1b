from __future__ import annotations

import json
import random
from collections.abc import Callable

import httpx
import pytest

from story_forge.core.assistant import (
    ASPECTS_PER_REQUEST,
    CRAFT_ASPECTS,
    AssistantGateway,
    length_instruction,
    pick_aspects,
)
from story_forge.core.errors import AssistantConfigError, AssistantProviderError


def _completion(content: str) -> dict[str, object]:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _gateway(handler: Callable[[httpx.Request], httpx.Response]) -> AssistantGateway:
    return AssistantGateway(api_key="test-key", transport=httpx.MockTransport(handler))


def test_suggest_improvements_issues_two_calls_and_parses_example() -> None:
    requests: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer test-key"
        body = json.loads(request.content)
        requests.append(body)
        if len(requests) == 1:
            return httpx.Response(200, json=_completion("1. Slow down.\n2. Add smell.\n3. Cut."))
        example = {
            "sceneTitle": "The Harbor",
            "revisedText": "Salt stung her eyes.",
            "analysis": "Adds sensory detail.",
        }
        return httpx.Response(200, json=_completion(json.dumps(example)))

    result = _gateway(handler).suggest_improvements(
        "She walked to the harbor.", aspects=["pacing and rhythm", " ", "pacing and rhythm"]
    )

    assert result.aspects == ("pacing and rhythm",)
    assert result.suggestions.startswith("1. Slow down.")
    assert result.example_edits.scene_title == "The Harbor"
    assert result.example_edits.revised_text == "Salt stung her eyes."
    assert [body["temperature"] for body in requests] == [0.9, 0.8]
    assert [body["max_tokens"] for body in requests] == [500, 1000]
    assert "response_format" not in requests[0]
    assert requests[1]["response_format"] == {"type": "json_object"}
    assert requests[1]["model"] == "gpt-4o-mini"


def test_unparseable_example_falls_back_to_raw_text() -> None:
    replies = iter(["Suggestions here.", "Not JSON at all"])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_completion(next(replies)))

    result = _gateway(handler).suggest_improvements("Text.")
    assert result.example_edits.scene_title == ""
    assert result.example_edits.revised_text == "Not JSON at all"
    assert len(result.aspects) == ASPECTS_PER_REQUEST


def test_rewrite_prefers_feedback_over_tone() -> None:
    systems: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        systems.append(body["messages"][0]["content"])
        return httpx.Response(200, json=_completion("Rewritten."))

    gateway = _gateway(handler)
    assert gateway.rewrite("Text.", tone="noir", feedback="make it shorter") == "Rewritten."
    gateway.rewrite("Text.", tone="noir")
    assert "make it shorter" in systems[0]
    assert "noir" not in systems[0]
    assert "noir tone" in systems[1]


def test_enhance_sends_normalized_length() -> None:
    bodies: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=_completion("Longer text."))

    assert _gateway(handler).enhance("Short.", target_length="2-3") == "Longer text."
    assert bodies[0]["max_tokens"] == 1500
    messages = bodies[0]["messages"]
    assert isinstance(messages, list)
    assert "about 2-3 paragraphs" in messages[1]["content"]


def test_generate_choices_requires_labeled_items() -> None:
    payload = {
        "choices": [
            {"label": " Open the chest ", "title": "Treasure", "description": "Gold glints."},
            {"label": "Leave", "title": "Outside"},
        ]
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_completion(json.dumps(payload)))

    choices = _gateway(handler).generate_choices("A chest sits here.", count=2)
    assert [choice.label for choice in choices] == ["Open the chest", "Leave"]
    assert choices[1].description == ""

    def bad_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_completion(json.dumps({"choices": [{"title": "x"}]})))

    with pytest.raises(AssistantProviderError):
        _gateway(bad_handler).generate_choices("A chest sits here.")

    def missing_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_completion(json.dumps({"options": []})))

    with pytest.raises(AssistantProviderError, match="choices"):
        _gateway(missing_handler).generate_choices("A chest sits here.")


def test_provider_error_carries_status_and_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text='{"error": "rate limited"}')

    with pytest.raises(AssistantProviderError) as excinfo:
        _gateway(handler).rewrite("Text.")
    assert excinfo.value.status_code == 429
    assert "rate limited" in excinfo.value.body
    assert str(excinfo.value).startswith("OpenAI API request failed:")


def test_transport_failure_is_a_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(AssistantProviderError, match="OpenAI API request failed") as excinfo:
        _gateway(handler).rewrite("Rain on tin.", tone="wistful")
    assert excinfo.value.status_code is None
    assert isinstance(excinfo.value.__cause__, httpx.ConnectTimeout)


def test_empty_completion_is_a_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []})

    with pytest.raises(AssistantProviderError):
        _gateway(handler).enhance("Text.")


def test_missing_api_key_raises_config_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=_completion("unused"))

    gateway = AssistantGateway(transport=httpx.MockTransport(handler))
    with pytest.raises(AssistantConfigError, match="OPENAI_API_KEY"):
        gateway.rewrite("Text.")
    assert calls == []


def test_env_overrides_model_and_base_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "env-key")
    monkeypatch.setenv("STORY_FORGE_OPENAI_MODEL", "gpt-test")
    monkeypatch.setenv("STORY_FORGE_OPENAI_BASE_URL", "https://llm.example/api/")
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_completion("ok"))

    gateway = AssistantGateway(transport=httpx.MockTransport(handler))
    assert gateway.model == "gpt-test"
    gateway.rewrite("Text.")
    assert str(seen[0].url) == "https://llm.example/api/chat/completions"
    assert seen[0].headers["Authorization"] == "Bearer env-key"


def test_length_instruction_normalizes_inputs() -> None:
    assert length_instruction("") == "roughly double the original length"
    assert length_instruction(None) == "roughly double the original length"
    assert length_instruction("1") == "about 1 paragraph"
    assert length_instruction("2-3") == "about 2-3 paragraphs"
    assert length_instruction("4 paragraphs") == "about 4 paragraphs"
    assert length_instruction("a short page") == "about a short page"
    assert length_instruction("paragraphs") == "roughly double the original length"


def test_pick_aspects_samples_three_distinct_craft_dimensions() -> None:
    picked = pick_aspects(None, rng=random.Random(7))
    assert len(picked) == ASPECTS_PER_REQUEST
    assert len(set(picked)) == ASPECTS_PER_REQUEST
    assert set(picked) <= set(CRAFT_ASPECTS)
    assert pick_aspects(None, rng=random.Random(7)) == picked
    assert pick_aspects(["dialogue and voice"]) == ("dialogue and voice",)
