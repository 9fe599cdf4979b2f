from __future__ import annotations

import asyncio
import json as _json

from fastapi import APIRouter, HTTPException
from sse_starlette.sse import EventSourceResponse

from deep_research.agents.classifier import classify_query, should_trigger_research
from deep_research.agents.orchestrator import ResearchOrchestrator
from deep_research.config import settings
from deep_research.models.research import SearchTier
from deep_research.models.schemas import (
    EstimateRequest,
    EstimateResponse,
    ResearchRequest,
    SessionRecordResponse,
)
from deep_research.research_config import ResearchConfig
from deep_research.services import logger as log_service
from deep_research.services import streaming
from deep_research.services import supabase as db
from deep_research.services.cost import estimate_session_cost

router = APIRouter(prefix="/api/research", tags=["research"])


def _base_config() -> ResearchConfig:
    return ResearchConfig.from_settings(settings)


def _validate_query(query: str) -> str:
    trimmed = query.strip()
    if not trimmed:
        raise HTTPException(status_code=400, detail="Query is required")
    if len(trimmed) > settings.research_max_query_length:
        raise HTTPException(
            status_code=400,
            detail=f"Query too long (max {settings.research_max_query_length} characters)",
        )
    return trimmed


@router.post("")
async def run_research(request: ResearchRequest):
    """Run a research session and stream its progress as server-sent events."""
    query = _validate_query(request.query)
    config = _base_config().with_overrides(
        max_cost=request.options.max_cost,
        skip_round2=request.options.skip_round2 or None,
    )

    if not request.force_deep_research and not should_trigger_research(query, config):
        raise HTTPException(
            status_code=422,
            detail="Query does not look like a research request. Set forceDeepResearch to run anyway.",
        )
    if not settings.search_api_key or not settings.openrouter_api_key:
        raise HTTPException(status_code=503, detail="Research service is not configured")

    orchestrator = ResearchOrchestrator(config)
    delay_s = max(settings.stream_delay_ms, 0) / 1000

    async def event_generator():
        log_service.log_event(
            event_type="research_started",
            message="Research started",
            session_id=orchestrator.session_id,
            query=query[:100],
        )
        try:
            async for event in orchestrator.research(query, request.options.force_complexity):
                yield {
                    "event": event.event.value,
                    "data": _json.dumps(event.data),
                }
                if delay_s:
                    await asyncio.sleep(delay_s)
        except Exception as e:
            log_service.log_event(
                event_type="stream_error",
                message="Unhandled error in research stream",
                error=str(e),
                session_id=orchestrator.session_id,
            )
            error_event = streaming.error("Research stream failed unexpectedly.", "UNKNOWN")
            yield {
                "event": error_event.event.value,
                "data": _json.dumps(error_event.data),
            }

    return EventSourceResponse(event_generator())


@router.post("/estimate", response_model=EstimateResponse)
async def estimate_research(request: EstimateRequest):
    """Classify a query and project its cost without calling any external API."""
    query = _validate_query(request.query)
    config = _base_config()
    classification = classify_query(query, config)
    use_pro = (
        request.use_pro_model
        if request.use_pro_model is not None
        else classification.suggested_tier == SearchTier.PRO
    )
    return EstimateResponse(
        complexity=classification.complexity,
        matched_keywords=classification.matched_keywords,
        estimated_time_s=classification.estimated_time_s,
        estimated_cost_usd=round(estimate_session_cost(classification.complexity, use_pro, config), 4),
        suggested_tier=classification.suggested_tier.value,
        should_trigger_research=should_trigger_research(query, config),
    )


@router.get("/sessions/{session_id}", response_model=SessionRecordResponse)
async def get_session(session_id: str):
    if not db.is_configured():
        raise HTTPException(status_code=503, detail="Session persistence is not configured")
    record = await db.fetch_session(session_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return SessionRecordResponse(**record)
