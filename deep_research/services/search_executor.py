from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from loguru import logger

from deep_research.errors import RateLimitedError, ResearchError
from deep_research.models.events import SSEEvent
from deep_research.models.research import SearchResult, SearchTier, SubQuestion
from deep_research.research_config import ResearchConfig
from deep_research.services import logger as log_service
from deep_research.services import streaming
from deep_research.services.budget import SessionBudget
from deep_research.services.cost import search_call_cost
from deep_research.tools.search_provider import SearchResponse

FAILED_SUMMARY = "search failed"

SearchFn = Callable[..., Awaitable[SearchResponse]]


@dataclass
class DispatchOutcome:
    results: list[SearchResult] = field(default_factory=list)
    events: list[SSEEvent] = field(default_factory=list)
    tripped: ResearchError | None = None
    duration_ms: int = 0

    @property
    def successful(self) -> list[SearchResult]:
        return [r for r in self.results if r.success]

    @property
    def parallelization_efficiency(self) -> float:
        """Summed leg time over wall time; 1.0 means no overlap."""
        if self.duration_ms <= 0:
            return 0.0
        return sum(r.duration_ms for r in self.results) / self.duration_ms


def select_for_dispatch(sub_questions: list[SubQuestion], limit: int, config: ResearchConfig) -> list[SubQuestion]:
    """Cap a round at ``limit`` legs, preferring higher priority then plan order."""
    limit = max(limit, 1)
    if len(sub_questions) <= limit:
        return list(sub_questions)

    ranked = sorted(
        enumerate(sub_questions),
        key=lambda pair: (-config.priority_weight(pair[1].priority), pair[0]),
    )
    selected = [sq for _, sq in ranked[:limit]]
    kept_ids = {sq.id for sq in selected}
    logger.info(f"Truncated {len(sub_questions)} sub-questions to {limit} for dispatch")

    # Dependencies on dropped questions can never be satisfied in this round.
    return [
        sq.model_copy(update={"depends_on": [d for d in sq.depends_on if d in kept_ids]})
        for sq in selected
    ]


def _failure_reason(exc: Exception) -> str:
    if isinstance(exc, RateLimitedError):
        return "rate limited"
    if isinstance(exc, asyncio.TimeoutError):
        return "timed out"
    return str(exc) or exc.__class__.__name__


def _context_for(sub_question: SubQuestion, finished: dict[str, SearchResult], base_context: str | None) -> str | None:
    parts: list[str] = []
    if base_context and base_context.strip():
        parts.append(base_context.strip())
    for dep_id in sub_question.depends_on:
        result = finished.get(dep_id)
        if result is not None and result.success:
            parts.append(f"[{dep_id}] {result.summary}")
    return "\n\n".join(parts) or None


async def dispatch(
    sub_questions: list[SubQuestion],
    *,
    search: SearchFn,
    tier: SearchTier,
    guard: SessionBudget,
    config: ResearchConfig,
    limit: int | None = None,
    context: str | None = None,
    provider: str = "search",
) -> DispatchOutcome:
    """Run one round of searches with bounded parallelism.

    Every selected leg either completes or fails on its own; a failed leg is
    recorded with ``summary="search failed"`` and is not retried. When the
    budget guard trips, no further legs start, running legs drain, and the
    trip is reported on the outcome.
    """
    selected = select_for_dispatch(
        sub_questions,
        min(limit or config.max_queries_per_round, config.max_queries_per_round),
        config,
    )
    outcome = DispatchOutcome()
    semaphore = asyncio.Semaphore(max(config.parallel_searches, 1))
    done = {sq.id: asyncio.Event() for sq in selected}
    finished: dict[str, SearchResult] = {}
    price = search_call_cost(tier, config)
    started = guard.clock()

    async def run_leg(sub_question: SubQuestion) -> None:
        try:
            for dep_id in sub_question.depends_on:
                if dep_id in done:
                    await done[dep_id].wait()

            async with semaphore:
                if outcome.tripped is not None:
                    return
                try:
                    guard.reserve(price)
                except ResearchError as exc:
                    if outcome.tripped is None:
                        outcome.tripped = exc
                    return

                outcome.events.append(streaming.search_start(sub_question))
                t0 = guard.clock()
                try:
                    response = await search(
                        sub_question.question,
                        tier=tier,
                        context=_context_for(sub_question, finished, context),
                    )
                except Exception as exc:
                    cost = price if config.charge_failed_searches else 0.0
                    guard.charge(cost, reserved=price)
                    result = SearchResult(
                        sub_question_id=sub_question.id,
                        summary=FAILED_SUMMARY,
                        cost_incurred=cost,
                        success=False,
                        error=_failure_reason(exc),
                        duration_ms=int((guard.clock() - t0) * 1000),
                    )
                    outcome.events.append(streaming.search_failed(result))
                    log_service.log_search_call(
                        provider=provider,
                        sub_question_id=sub_question.id,
                        tier=tier.value,
                        duration_ms=result.duration_ms,
                        cost_usd=cost,
                        error=result.error,
                    )
                else:
                    guard.charge(price, reserved=price)
                    result = SearchResult(
                        sub_question_id=sub_question.id,
                        summary=response.summary,
                        sources=tuple(response.sources),
                        cost_incurred=price,
                        duration_ms=int((guard.clock() - t0) * 1000),
                    )
                    outcome.events.append(streaming.search_progress(sub_question.id, len(result.sources)))
                    outcome.events.append(streaming.search_complete(result))
                    log_service.log_search_call(
                        provider=response.provider,
                        sub_question_id=sub_question.id,
                        tier=tier.value,
                        duration_ms=result.duration_ms,
                        sources=len(result.sources),
                        cost_usd=price,
                    )
                finished[sub_question.id] = result
        finally:
            done[sub_question.id].set()

    await asyncio.gather(*(run_leg(sq) for sq in selected))

    outcome.results = [finished[sq.id] for sq in selected if sq.id in finished]
    outcome.duration_ms = int((guard.clock() - started) * 1000)
    return outcome
