"""Optional persistence of finished research sessions in Supabase."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

from supabase import Client, create_client

from deep_research.config import settings
from deep_research.models.research import ResearchSession
from deep_research.services import logger as log_service


def get_client() -> Client:
    return create_client(settings.supabase_url, settings.supabase_anon_key)


_client: Client | None = None


def client() -> Client:
    global _client
    if _client is None:
        _client = get_client()
    return _client


def is_configured() -> bool:
    return settings.persistence_enabled


async def _execute(query: Any) -> Any:
    """Run blocking Supabase query execution in a worker thread."""
    return await asyncio.to_thread(query.execute)


def _session_row(session: ResearchSession) -> dict[str, Any]:
    return {
        "id": session.id,
        "query": session.query,
        "complexity": session.complexity.value if session.complexity else None,
        "status": session.status.value,
        "final_answer": session.final_answer,
        "confidence": session.confidence,
        "rounds_completed": session.rounds_completed,
        "cost_incurred": round(session.accumulated_cost, 6),
        "error_code": session.error_code,
        "message": session.message,
        "sources": [s.to_dict() for s in session.final_sources],
        "completed_at": datetime.now(timezone.utc).isoformat(),
    }


def _plan_rows(session: ResearchSession) -> list[dict[str, Any]]:
    return [
        {
            "session_id": session.id,
            "round": r.index,
            "sub_questions": [sq.model_dump(mode="json") for sq in r.sub_questions],
        }
        for r in session.rounds
    ]


def _note_rows(session: ResearchSession) -> list[dict[str, Any]]:
    return [
        {"session_id": session.id, "round": r.index, **result.to_dict()}
        for r in session.rounds
        for result in r.search_results
    ]


def _gap_rows(session: ResearchSession) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for r in session.rounds:
        if r.synthesis is None:
            continue
        for gap in r.synthesis.gaps:
            rows.append({"session_id": session.id, "round": r.index, **gap.model_dump(mode="json")})
    return rows


async def save_session(session: ResearchSession) -> bool:
    """Persist a finished session. Failures are logged and reported as False."""
    if not is_configured():
        return False

    writes: list[tuple[str, Any]] = [
        ("research_sessions", _session_row(session)),
        ("research_plans", _plan_rows(session)),
        ("research_notes", _note_rows(session)),
        ("research_gaps", _gap_rows(session)),
        ("research_session_metrics", {"session_id": session.id, **session.metrics.to_dict()}),
    ]
    for table, payload in writes:
        if isinstance(payload, list) and not payload:
            continue
        try:
            await _execute(client().table(table).insert(payload))
        except Exception as exc:
            log_service.log_db_operation("insert", table, "failed", details=session.id, error=str(exc))
            return False
        log_service.log_db_operation("insert", table, "success", details=session.id)
    return True


async def fetch_session(session_id: str) -> dict[str, Any] | None:
    """Load a stored session with its plans, notes, gaps and metrics."""
    result = await _execute(client().table("research_sessions").select("*").eq("id", session_id))
    if not result.data:
        return None

    async def rows(table: str) -> list[dict[str, Any]]:
        res = await _execute(client().table(table).select("*").eq("session_id", session_id))
        return res.data or []

    plans, notes, gaps, metrics = await asyncio.gather(
        rows("research_plans"),
        rows("research_notes"),
        rows("research_gaps"),
        rows("research_session_metrics"),
    )
    return {
        "session": result.data[0],
        "plans": plans,
        "notes": notes,
        "gaps": gaps,
        "metrics": metrics[0] if metrics else None,
    }
