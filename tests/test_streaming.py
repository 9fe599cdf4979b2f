from __future__ import annotations

import json

import pytest

from deep_research.models.events import EventType
from deep_research.models.research import Gap, Priority, SearchResult, Source, SubQuestion
from deep_research.services import streaming
from deep_research.services.prompt_store import render_block, render_prompt


def test_sse_event_format():
    event = streaming.synthesize_progress("chunk")
    assert event.format() == 'event: synthesize_progress\ndata: {"chunk": "chunk"}\n\n'


def test_plan_event_serializes_sub_questions():
    sq = SubQuestion(id="sq-1", question="Why?", priority=Priority.HIGH, depends_on=[])
    event = streaming.plan([sq], round_index=1, fast_path=True)

    assert event.event == EventType.PLAN
    assert event.data["sub_questions"][0]["priority"] == "high"
    assert event.data["fast_path"] is True
    assert "fallback" not in event.data
    json.dumps(event.data)


def test_search_events_carry_sources_and_errors():
    source = Source(title="T", url="https://t.example", domain="t.example")
    ok = SearchResult(sub_question_id="sq-1", summary="s", sources=(source,), duration_ms=12)
    failed = SearchResult(sub_question_id="sq-2", summary="search failed", success=False, error="rate limited")

    assert streaming.search_complete(ok).data["sources"] == [source.to_dict()]
    assert streaming.search_failed(failed).data == {"sub_question_id": "sq-2", "error": "rate limited"}
    assert streaming.search_progress("sq-1", 3).data == {"sub_question_id": "sq-1", "sources_found": 3}


def test_gap_and_error_events():
    gap = Gap(description="d", suggested_query="q", priority=Priority.LOW)
    assert streaming.gap_found(gap, will_start_round2=False).data["gap"]["suggested_query"] == "q"

    error = streaming.error("Research took too long.", "TIMEOUT", recoverable=True)
    assert error.data == {"message": "Research took too long.", "recoverable": True, "code": "TIMEOUT"}


def test_render_prompt_substitutes_template_values():
    prompt = render_prompt(
        "planner.user",
        query="Why is the sky blue?",
        complexity="simple",
        guidance="Generate 1-2 focused sub-questions.",
        context_block="",
    )
    assert 'Research Query: "Why is the sky blue?"' in prompt
    assert "Complexity Level: simple" in prompt


def test_render_prompt_raises_for_unknown_key():
    with pytest.raises(KeyError):
        render_prompt("missing.prompt.key")


def test_render_prompt_raises_for_missing_value():
    with pytest.raises(KeyError):
        render_prompt("search.context_block")


def test_render_block_is_empty_for_blank_values():
    assert render_block("search.context_block", context=None) == ""
    assert render_block("search.context_block", context="   ") == ""
    assert "prior notes" in render_block("search.context_block", context="prior notes")
