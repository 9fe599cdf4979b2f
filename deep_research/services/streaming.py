from __future__ import annotations

from typing import Any

from deep_research.models.events import EventType, SSEEvent
from deep_research.models.research import (
    ClassificationResult,
    Gap,
    SearchResult,
    SubQuestion,
)


def research_start(session_id: str, query: str, estimated_time_s: int = 30) -> SSEEvent:
    return SSEEvent(
        event=EventType.RESEARCH_START,
        data={"session_id": session_id, "query": query, "estimated_time_s": estimated_time_s},
    )


def classify(classification: ClassificationResult, estimated_cost_usd: float) -> SSEEvent:
    return SSEEvent(
        event=EventType.CLASSIFY,
        data={**classification.to_dict(), "estimated_cost_usd": round(estimated_cost_usd, 4)},
    )


def plan(
    sub_questions: list[SubQuestion],
    *,
    round_index: int,
    fallback: bool = False,
    fast_path: bool = False,
) -> SSEEvent:
    data: dict[str, Any] = {
        "round": round_index,
        "sub_questions": [sq.model_dump(mode="json") for sq in sub_questions],
    }
    if fallback:
        data["fallback"] = True
    if fast_path:
        data["fast_path"] = True
    return SSEEvent(event=EventType.PLAN, data=data)


def search_start(sub_question: SubQuestion) -> SSEEvent:
    return SSEEvent(
        event=EventType.SEARCH_START,
        data={"sub_question_id": sub_question.id, "question": sub_question.question},
    )


def search_progress(sub_question_id: str, sources_found: int) -> SSEEvent:
    return SSEEvent(
        event=EventType.SEARCH_PROGRESS,
        data={"sub_question_id": sub_question_id, "sources_found": sources_found},
    )


def search_complete(result: SearchResult) -> SSEEvent:
    return SSEEvent(
        event=EventType.SEARCH_COMPLETE,
        data={
            "sub_question_id": result.sub_question_id,
            "sources_count": len(result.sources),
            "sources": [s.to_dict() for s in result.sources],
            "duration_ms": result.duration_ms,
        },
    )


def search_failed(result: SearchResult) -> SSEEvent:
    return SSEEvent(
        event=EventType.SEARCH_FAILED,
        data={
            "sub_question_id": result.sub_question_id,
            "error": result.error or "search failed",
        },
    )


def synthesize_start(round_index: int, notes_count: int, sources_count: int) -> SSEEvent:
    return SSEEvent(
        event=EventType.SYNTHESIZE_START,
        data={"round": round_index, "notes_count": notes_count, "sources_count": sources_count},
    )


def synthesize_progress(chunk: str) -> SSEEvent:
    return SSEEvent(event=EventType.SYNTHESIZE_PROGRESS, data={"chunk": chunk})


def gap_found(gap: Gap, *, will_start_round2: bool) -> SSEEvent:
    return SSEEvent(
        event=EventType.GAP_FOUND,
        data={"gap": gap.model_dump(mode="json"), "will_start_round2": will_start_round2},
    )


def round2_start(gaps: list[Gap], new_queries: list[str]) -> SSEEvent:
    return SSEEvent(
        event=EventType.ROUND2_START,
        data={
            "gaps": [g.model_dump(mode="json") for g in gaps],
            "new_queries": new_queries,
        },
    )


def research_complete(payload: dict[str, Any]) -> SSEEvent:
    return SSEEvent(event=EventType.RESEARCH_COMPLETE, data=payload)


def error(message: str, code: str | None = None, *, recoverable: bool = False) -> SSEEvent:
    data: dict[str, Any] = {"message": message, "recoverable": recoverable}
    if code:
        data["code"] = code
    return SSEEvent(event=EventType.ERROR, data=data)
