"""Writing-assistant gateway over the OpenAI chat completions API.

The gateway is stateless per call: each operation builds a prompt pair,
issues one (or, for improvement suggestions, two sequential) completion
requests, and normalizes the reply. There are no retries; a failed call
surfaces as :class:`AssistantProviderError` carrying the provider body.
"""

from __future__ import annotations

import json
import logging
import os
import random
import re
from dataclasses import dataclass
from typing import Any, Final

import httpx

from story_forge.core.errors import AssistantConfigError, AssistantProviderError

logger = logging.getLogger(__name__)

DEFAULT_MODEL: Final[str] = "gpt-4o-mini"
DEFAULT_BASE_URL: Final[str] = "https://api.openai.com/v1"
DEFAULT_TIMEOUT_SECONDS: Final[float] = 60.0

CRAFT_ASPECTS: Final[tuple[str, ...]] = (
    "pacing and rhythm",
    "character depth and motivation",
    "sensory details and imagery",
    "dialogue and voice",
    "tension and conflict",
    "world-building and atmosphere",
    "emotional resonance",
    "plot structure and flow",
    "theme and symbolism",
    "opening and closing impact",
)
ASPECTS_PER_REQUEST: Final[int] = 3

_SYSTEM_PREAMBLE: Final[str] = (
    "You are a creative writing assistant for branching interactive fiction."
)
_RANGE_RE = re.compile(r"^(\d+)\s*[-–]\s*(\d+)$")
_COUNT_RE = re.compile(r"^(\d+)$")
_PARAGRAPHS_SUFFIX_RE = re.compile(r"\s*paragraphs?\s*$", re.IGNORECASE)


@dataclass(frozen=True)
class ExampleEdit:
    """Worked example returned next to improvement suggestions."""

    scene_title: str
    revised_text: str
    analysis: str


@dataclass(frozen=True)
class ImprovementResult:
    suggestions: str
    example_edits: ExampleEdit
    aspects: tuple[str, ...]


@dataclass(frozen=True)
class GeneratedChoice:
    label: str
    title: str
    description: str


def api_key_from_env() -> str:
    """Return the configured provider key or raise a setup error."""
    api_key = os.environ.get("OPENAI_API_KEY", "").strip()
    if not api_key:
        raise AssistantConfigError(
            "OPENAI_API_KEY not found. Set OPENAI_API_KEY in the server environment."
        )
    return api_key


def pick_aspects(aspects: list[str] | None, *, rng: random.Random | None = None) -> tuple[str, ...]:
    """Use caller aspects when given, else sample three craft dimensions."""
    cleaned = [aspect.strip() for aspect in aspects or [] if aspect.strip()]
    if cleaned:
        return tuple(dict.fromkeys(cleaned))
    chooser = rng or random.Random()
    return tuple(chooser.sample(CRAFT_ASPECTS, ASPECTS_PER_REQUEST))


def length_instruction(target_length: str | None) -> str:
    """Normalize "N", "N-M", or "N paragraphs" into one length phrase."""
    raw = (target_length or "").strip()
    if not raw:
        return "roughly double the original length"
    bare = _PARAGRAPHS_SUFFIX_RE.sub("", raw).strip()
    if not bare:
        return "roughly double the original length"
    count = _COUNT_RE.match(bare)
    if count:
        amount = int(count.group(1))
        unit = "paragraph" if amount == 1 else "paragraphs"
        return f"about {amount} {unit}"
    span = _RANGE_RE.match(bare)
    if span:
        return f"about {span.group(1)}-{span.group(2)} paragraphs"
    return f"about {bare}"


class AssistantGateway:
    """Translate editor requests into prompts and normalize model replies."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._api_key = api_key
        env_model = os.environ.get("STORY_FORGE_OPENAI_MODEL", "").strip()
        env_base_url = os.environ.get("STORY_FORGE_OPENAI_BASE_URL", "").strip()
        self._model = model or env_model or DEFAULT_MODEL
        self._base_url = (base_url or env_base_url or DEFAULT_BASE_URL).rstrip("/")
        self._timeout_seconds = timeout_seconds or _float_env(
            "STORY_FORGE_OPENAI_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS
        )
        self._transport = transport
        self._rng = rng

    @property
    def model(self) -> str:
        return self._model

    def suggest_improvements(
        self, content: str, *, aspects: list[str] | None = None
    ) -> ImprovementResult:
        """Prose suggestions plus a JSON worked example applying them."""
        api_key = self._require_key()
        focus = pick_aspects(aspects, rng=self._rng)
        suggestions = self._complete(
            api_key=api_key,
            system=(
                f"{_SYSTEM_PREAMBLE} Provide exactly 3 specific, actionable suggestions to "
                f"improve narrative text. Focus your analysis on these aspects: "
                f"{', '.join(focus)}. Each suggestion should be concrete and distinct."
            ),
            user=(
                "Analyze this story text and provide exactly 3 distinct improvement "
                f"suggestions:\n\n{content}"
            ),
            temperature=0.9,
            max_tokens=500,
        )
        raw_example = self._complete(
            api_key=api_key,
            system=(
                f"{_SYSTEM_PREAMBLE} Given the original text and improvement suggestions, "
                "return a JSON object with exactly these string fields: "
                '"sceneTitle" (a short title for the revised scene), '
                '"revisedText" (the text rewritten to apply the suggestions), and '
                '"analysis" (how the revision applies them).'
            ),
            user=f"Original text:\n{content}\n\nSuggestions:\n{suggestions}",
            temperature=0.8,
            max_tokens=1000,
            json_mode=True,
        )
        return ImprovementResult(
            suggestions=suggestions,
            example_edits=_parse_example_edit(raw_example),
            aspects=focus,
        )

    def rewrite(
        self, content: str, *, tone: str | None = None, feedback: str | None = None
    ) -> str:
        """Rewrite text; author feedback takes priority over a requested tone."""
        api_key = self._require_key()
        feedback_text = (feedback or "").strip()
        tone_text = (tone or "").strip()
        if feedback_text:
            system = (
                f"{_SYSTEM_PREAMBLE} Rewrite the text following this author feedback while "
                f"preserving the core story beats: {feedback_text}"
            )
        elif tone_text:
            system = (
                f"{_SYSTEM_PREAMBLE} Rewrite the text in a {tone_text} tone while preserving "
                "the core meaning and story beats."
            )
        else:
            system = (
                f"{_SYSTEM_PREAMBLE} Rewrite the text in an engaging way while preserving "
                "the core meaning and story beats."
            )
        return self._complete(
            api_key=api_key,
            system=system,
            user=f"Rewrite this:\n\n{content}",
            temperature=0.8,
            max_tokens=1000,
        )

    def enhance(self, content: str, *, target_length: str | None = None) -> str:
        """Expand text with more detail to a normalized target length."""
        api_key = self._require_key()
        instruction = length_instruction(target_length)
        return self._complete(
            api_key=api_key,
            system=(
                f"{_SYSTEM_PREAMBLE} Expand and enhance the given text by adding detail, depth, "
                "and narrative richness while keeping the original tone and direction. "
                f"Target length: {instruction}."
            ),
            user=(
                f"Enhance and expand this text to {instruction}, adding more detail and "
                f"depth:\n\n{content}"
            ),
            temperature=0.8,
            max_tokens=1500,
        )

    def generate_choices(self, content: str, *, count: int = 3) -> list[GeneratedChoice]:
        """Ask for ``count`` branch choices; the reply must carry a choices array."""
        api_key = self._require_key()
        raw = self._complete(
            api_key=api_key,
            system=(
                f"{_SYSTEM_PREAMBLE} Generate compelling story choices that branch from the "
                "given narrative."
            ),
            user=(
                f"Given this story text, suggest {count} interesting choices the reader could "
                'make. Return a JSON object with a "choices" key containing an array of '
                'objects with "label" (the choice text shown to the player), "title" (a short '
                'title for the resulting scene), and "description" fields.\n\n'
                f"{content}"
            ),
            temperature=0.9,
            max_tokens=800,
            json_mode=True,
        )
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise AssistantProviderError(
                "Choice generation returned invalid JSON.", body=raw
            ) from exc
        items = parsed.get("choices") if isinstance(parsed, dict) else None
        if not isinstance(items, list):
            raise AssistantProviderError(
                'Choice generation response is missing a "choices" array.', body=raw
            )
        choices: list[GeneratedChoice] = []
        for item in items:
            if not isinstance(item, dict) or not str(item.get("label") or "").strip():
                raise AssistantProviderError(
                    "Choice generation returned a choice without a label.", body=raw
                )
            choices.append(
                GeneratedChoice(
                    label=str(item["label"]).strip(),
                    title=str(item.get("title") or "").strip(),
                    description=str(item.get("description") or "").strip(),
                )
            )
        return choices

    def _require_key(self) -> str:
        if self._api_key:
            return self._api_key
        return api_key_from_env()

    def _complete(
        self,
        *,
        api_key: str,
        system: str,
        user: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool = False,
    ) -> str:
        body: dict[str, Any] = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        try:
            with httpx.Client(timeout=self._timeout_seconds, transport=self._transport) as client:
                response = client.post(
                    f"{self._base_url}/chat/completions",
                    json=body,
                    headers={"Authorization": f"Bearer {api_key}"},
                )
        except httpx.HTTPError as exc:
            logger.warning(
                "assistant.transport_error model=%s error=%s", self._model, type(exc).__name__
            )
            raise AssistantProviderError(f"OpenAI API request failed: {exc}") from exc
        if response.status_code >= 400:
            logger.warning(
                "assistant.provider_error status=%s model=%s",
                response.status_code,
                self._model,
            )
            raise AssistantProviderError(
                f"OpenAI API request failed: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise AssistantProviderError(
                "OpenAI API response was not JSON.", body=response.text
            ) from exc
        return _message_content(payload, raw=response.text)


def _message_content(payload: object, *, raw: str) -> str:
    choices = payload.get("choices") if isinstance(payload, dict) else None
    if not isinstance(choices, list) or not choices:
        raise AssistantProviderError(
            "OpenAI API response did not contain any choices.", body=raw
        )
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content:
        raise AssistantProviderError(
            "OpenAI API response did not contain message content.", body=raw
        )
    return content


def _parse_example_edit(raw: str) -> ExampleEdit:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("assistant.example_edit_unparsed chars=%s", len(raw))
        return ExampleEdit(scene_title="", revised_text=raw, analysis="")
    if not isinstance(parsed, dict):
        return ExampleEdit(scene_title="", revised_text=raw, analysis="")

    def text(key: str) -> str:
        value = parsed.get(key)
        return value if isinstance(value, str) else ""

    return ExampleEdit(
        scene_title=text("sceneTitle"),
        revised_text=text("revisedText") or raw,
        analysis=text("analysis"),
    )


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(1.0, min(600.0, value))
