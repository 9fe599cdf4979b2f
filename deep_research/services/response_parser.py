"""Parsing of LLM responses that mix prose with a JSON block.

The synthesizer asks for a prose answer followed by a trailing JSON object
(``{"gaps": [...], "confidence": 0.0-1.0}``), normally inside a ```json
fence. Anything that cannot be read back into that shape raises
``ResponseParseError``; callers never receive defaulted values.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from deep_research.errors import ResponseParseError
from deep_research.models.research import Gap, Priority

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(\{.*?\})\s*```", re.DOTALL)


class _GapPayload(BaseModel):
    description: str = Field(min_length=1)
    suggested_query: str = Field(alias="suggestedQuery", min_length=1)
    priority: Priority = Priority.MEDIUM

    model_config = {"populate_by_name": True, "str_strip_whitespace": True}

    @field_validator("priority", mode="before")
    @classmethod
    def _lower_priority(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class _AssessmentPayload(BaseModel):
    gaps: list[_GapPayload] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)


@dataclass
class SynthesisAssessment:
    confidence: float
    gaps: list[Gap] = field(default_factory=list)


def _trailing_bare_object(text: str) -> tuple[int, dict[str, Any]] | None:
    """Find a JSON object that runs to the end of ``text``; return (start, obj)."""
    stripped = text.rstrip()
    if not stripped.endswith("}"):
        return None
    decoder = json.JSONDecoder()
    for match in re.finditer(r"\{", stripped):
        start = match.start()
        try:
            obj, end = decoder.raw_decode(stripped, start)
        except json.JSONDecodeError:
            continue
        if end == len(stripped) and isinstance(obj, dict):
            return start, obj
    return None


def split_prose_and_json(text: str) -> tuple[str, dict[str, Any]]:
    """Split a response into the prose before its trailing JSON block and the block itself."""
    if not text or not text.strip():
        raise ResponseParseError("empty response")

    fences = list(_FENCE_RE.finditer(text))
    if fences:
        last = fences[-1]
        try:
            payload = json.loads(last.group(1))
        except json.JSONDecodeError as exc:
            raise ResponseParseError(f"invalid JSON block: {exc.msg}") from exc
        if not isinstance(payload, dict):
            raise ResponseParseError("JSON block is not an object")
        return text[: last.start()].strip(), payload

    found = _trailing_bare_object(text)
    if found is None:
        raise ResponseParseError("no trailing JSON block found")
    start, payload = found
    return text[:start].strip(), payload


def parse_synthesis_response(text: str) -> tuple[str, SynthesisAssessment]:
    prose, payload = split_prose_and_json(text)
    if not prose:
        raise ResponseParseError("response has no answer text")
    try:
        parsed = _AssessmentPayload.model_validate(payload)
    except ValidationError as exc:
        raise ResponseParseError(f"invalid assessment block: {exc.error_count()} error(s)") from exc

    gaps = [
        Gap(
            description=g.description.strip(),
            suggested_query=g.suggested_query.strip(),
            priority=g.priority,
        )
        for g in parsed.gaps
    ]
    return prose, SynthesisAssessment(confidence=parsed.confidence, gaps=gaps)


def extract_json_object(raw_text: str) -> dict[str, Any]:
    """Pull the first JSON object out of a (possibly fenced) response."""
    text = (raw_text or "").strip()
    fence = _FENCE_RE.search(text)
    if fence:
        text = fence.group(1)
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise ResponseParseError("object not found")
    try:
        parsed = json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise ResponseParseError(f"invalid JSON: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise ResponseParseError("not an object")
    return parsed
