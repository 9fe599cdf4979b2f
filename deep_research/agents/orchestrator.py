from __future__ import annotations

import time
import uuid
from typing import Any, AsyncGenerator, Awaitable, Callable

from loguru import logger

from deep_research.agents.classifier import classify_query
from deep_research.agents.gap_analyzer import gaps_to_sub_questions, select_gaps, should_continue
from deep_research.agents.planner import Planner, fallback_plan
from deep_research.agents.synthesizer import Synthesizer
from deep_research.config import settings
from deep_research.errors import (
    INSUFFICIENT_BUDGET_ANSWER,
    CostLimitExceeded,
    ErrorCode,
    PlanningError,
    ResearchTimeout,
    SynthesisError,
    message_for,
)
from deep_research.llm_client import Usage
from deep_research.models.events import SSEEvent
from deep_research.models.research import (
    Gap,
    QueryComplexity,
    ResearchSession,
    Round,
    SearchResult,
    SearchTier,
    SessionStatus,
    SubQuestion,
    Synthesis,
)
from deep_research.research_config import ResearchConfig
from deep_research.services import logger as log_service
from deep_research.services import streaming
from deep_research.services import supabase as db
from deep_research.services.budget import SessionBudget
from deep_research.services.cost import (
    estimate_planning_cost,
    estimate_session_cost,
    estimate_synthesis_cost,
    llm_call_cost,
)
from deep_research.services.search_executor import SearchFn, dispatch
from deep_research.tools import search_provider

PersistFn = Callable[[ResearchSession], Awaitable[bool]]


class ResearchOrchestrator:
    """Runs one research session end to end.

    Flow:
      1. Classify the query (deterministic, no external calls)
      2. Plan sub-questions via LLM, or search the raw query on the fast path
      3. Fan out searches under the session budget
      4. Stream a cited synthesis with a gap assessment
      5. Optionally run a gap-filling round, then assemble the final answer

    Every step yields SSE events. The orchestrator never raises into the
    stream: terminal states end with ``research_complete``.
    """

    def __init__(
        self,
        config: ResearchConfig | None = None,
        *,
        client: Any = None,
        search: SearchFn | None = None,
        clock: Callable[[], float] = time.monotonic,
        persist: PersistFn | None = None,
        session_id: str | None = None,
    ):
        self.config = config or ResearchConfig.from_settings(settings)
        self.client = client
        self.search = search or search_provider.search
        self.clock = clock
        if persist is None and db.is_configured():
            persist = db.save_session
        self.persist = persist
        self.session_id = session_id or str(uuid.uuid4())
        self.session: ResearchSession | None = None
        self.planner = Planner(self.config, client=client)
        self.synthesizer = Synthesizer(self.config, client=client)

    def _elapsed_ms(self, since: float) -> int:
        return int((self.clock() - since) * 1000)

    def _charge_llm(self, budget: SessionBudget, usage: Usage | None, fallback_estimate: float) -> None:
        if usage is None:
            return
        if usage.input_tokens or usage.output_tokens:
            budget.charge(llm_call_cost(usage.input_tokens, usage.output_tokens, self.config))
        else:
            # Gateway reported no usage; charge the projection instead.
            budget.charge(fallback_estimate)

    async def research(
        self,
        query: str,
        force_complexity: QueryComplexity | None = None,
    ) -> AsyncGenerator[SSEEvent, None]:
        """Execute the research pipeline, yielding SSE events throughout."""
        session = ResearchSession(
            id=self.session_id,
            query=query.strip(),
            started_at=self.clock(),
            max_rounds=1 if self.config.skip_round2 else self.config.max_rounds,
        )
        self.session = session
        budget = SessionBudget(session, self.config, self.clock)
        log_service.log_research_step(session.id, "session", "started", {"query": session.query})

        try:
            async for event in self._run(session, budget, force_complexity):
                yield event
        except (CostLimitExceeded, ResearchTimeout) as exc:
            async for event in self._finish(session, SessionStatus.PARTIAL, exc.code):
                yield event
        except Exception as exc:
            logger.exception(f"Research session {session.id} failed unexpectedly: {exc}")
            async for event in self._finish(session, SessionStatus.FAILED, ErrorCode.UNKNOWN):
                yield event

    async def _run(
        self,
        session: ResearchSession,
        budget: SessionBudget,
        force_complexity: QueryComplexity | None,
    ) -> AsyncGenerator[SSEEvent, None]:
        metrics = session.metrics

        # Step 1: Classify
        t0 = self.clock()
        try:
            classification = classify_query(session.query, self.config, force_complexity)
            session.set_complexity(classification.complexity)
        except (KeyError, ValueError) as exc:
            logger.error(f"Session {session.id}: classification failed: {exc}")
            async for event in self._finish(session, SessionStatus.FAILED, ErrorCode.CLASSIFICATION_FAILED):
                yield event
            return
        tier = classification.suggested_tier
        metrics.estimated_cost_usd = estimate_session_cost(
            classification.complexity, tier == SearchTier.PRO, self.config
        )
        metrics.classification_duration_ms = self._elapsed_ms(t0)
        yield streaming.research_start(session.id, session.query, classification.estimated_time_s)
        yield streaming.classify(classification, metrics.estimated_cost_usd)
        log_service.log_research_step(session.id, "classify", "completed", classification.to_dict())

        # Step 2: Plan
        t0 = self.clock()
        sub_questions, plan_event = await self._plan(session, budget, classification.complexity)
        metrics.planning_duration_ms = self._elapsed_ms(t0)
        yield plan_event

        # Step 3: Round 1 searches
        t0 = self.clock()
        first = Round(index=1, sub_questions=sub_questions)
        session.rounds.append(first)
        outcome = await dispatch(
            sub_questions,
            search=self.search,
            tier=tier,
            guard=budget,
            config=self.config,
            limit=self.config.queries_per_complexity.get(classification.complexity),
            provider=settings.search_provider,
        )
        metrics.search_duration_ms = self._elapsed_ms(t0)
        metrics.total_queries += len(outcome.results)
        metrics.parallelization_efficiency = outcome.parallelization_efficiency
        for event in outcome.events:
            yield event

        if outcome.tripped is not None:
            first.failed = True
            raise outcome.tripped
        first.search_results = outcome.results

        if not outcome.successful:
            first.failed = True
            async for event in self._finish(session, SessionStatus.FAILED, ErrorCode.SEARCH_FAILED):
                yield event
            return

        # Step 4: Round 1 synthesis
        t0 = self.clock()
        try:
            async for event in self._synthesize(session, budget, first.search_results, sub_questions, 1):
                yield event
        except SynthesisError:
            first.failed = True
            metrics.synthesis_duration_ms = self._elapsed_ms(t0)
            async for event in self._finish(session, SessionStatus.FAILED, ErrorCode.SYNTHESIS_FAILED):
                yield event
            return
        metrics.synthesis_duration_ms = self._elapsed_ms(t0)
        first.synthesis = self.synthesizer.result

        # Step 5: Gap-filling rounds
        while True:
            current = session.rounds[-1]
            synthesis = current.synthesis
            assert synthesis is not None
            metrics.gaps_found += len(synthesis.gaps)
            continuing = should_continue(session, synthesis, self.config, self.clock())
            selected = select_gaps(synthesis.gaps, self.config) if continuing else []
            for gap in synthesis.gaps:
                yield streaming.gap_found(gap, will_start_round2=continuing and gap in selected)
            if not continuing:
                break

            round_index = current.index + 1
            status, code = None, None
            t0 = self.clock()
            async for event in self._follow_up_round(session, budget, round_index, selected, tier):
                if isinstance(event, SSEEvent):
                    yield event
                else:
                    status, code = event
            elapsed = self._elapsed_ms(t0)
            metrics.round2_duration_ms = (metrics.round2_duration_ms or 0) + elapsed
            if status is not None:
                async for event in self._finish(session, status, code):
                    yield event
                return

        async for event in self._finish(session, SessionStatus.COMPLETED, None):
            yield event

    async def _plan(
        self,
        session: ResearchSession,
        budget: SessionBudget,
        complexity: QueryComplexity,
    ) -> tuple[list[SubQuestion], SSEEvent]:
        if self.config.fast_path_enabled and complexity == QueryComplexity.SIMPLE:
            session.max_rounds = 1
            sub_questions = fallback_plan(session.query)
            logger.info(f"Session {session.id}: fast path, searching the query directly")
            return sub_questions, streaming.plan(sub_questions, round_index=1, fast_path=True)

        estimate = estimate_planning_cost(self.config)
        budget.check(estimate)
        try:
            sub_questions = await self.planner.plan(session.query, complexity)
        except PlanningError as exc:
            self._charge_llm(budget, self.planner.last_usage, estimate)
            logger.warning(f"Session {session.id}: planning failed ({exc}); using the raw query")
            log_service.log_research_step(session.id, "plan", "fallback", {"error": str(exc)})
            sub_questions = fallback_plan(session.query)
            return sub_questions, streaming.plan(sub_questions, round_index=1, fallback=True)

        self._charge_llm(budget, self.planner.last_usage, estimate)
        log_service.log_research_step(
            session.id, "plan", "completed", {"sub_questions": [sq.id for sq in sub_questions]}
        )
        return sub_questions, streaming.plan(sub_questions, round_index=1)

    async def _synthesize(
        self,
        session: ResearchSession,
        budget: SessionBudget,
        results: list[SearchResult],
        sub_questions: list[SubQuestion],
        round_index: int,
        *,
        previous_answer: str | None = None,
        gaps: list[Gap] | None = None,
    ) -> AsyncGenerator[SSEEvent, None]:
        successful = [r for r in results if r.success]
        note_chars = sum(len(r.summary) for r in successful)
        estimate = estimate_synthesis_cost(note_chars, self.config)
        budget.check(estimate)

        source_urls = {s.url for r in successful for s in r.sources}
        yield streaming.synthesize_start(round_index, len(successful), len(source_urls))
        try:
            async for event in self.synthesizer.run(
                session.query,
                results,
                round_index=round_index,
                previous_answer=previous_answer,
                gaps=gaps,
                sub_questions=sub_questions,
            ):
                yield event
        finally:
            self._charge_llm(budget, self.synthesizer.last_usage, estimate)
        log_service.log_research_step(session.id, f"synthesize_round{round_index}", "completed")

    async def _follow_up_round(
        self,
        session: ResearchSession,
        budget: SessionBudget,
        round_index: int,
        gaps: list[Gap],
        tier: SearchTier,
    ) -> AsyncGenerator[SSEEvent | tuple[SessionStatus, ErrorCode], None]:
        """Run one gap-filling round.

        Yields SSE events; a terminal ``(status, code)`` tuple is yielded last
        when the round cannot improve on the previous answer.
        """
        previous = session.last_synthesis
        assert previous is not None
        sub_questions = gaps_to_sub_questions(gaps, round_index)
        yield streaming.round2_start(gaps, [sq.question for sq in sub_questions])
        yield streaming.plan(sub_questions, round_index=round_index)

        follow_up = Round(index=round_index, sub_questions=sub_questions)
        session.rounds.append(follow_up)
        outcome = await dispatch(
            sub_questions,
            search=self.search,
            tier=tier,
            guard=budget,
            config=self.config,
            limit=self.config.max_gaps_to_address,
            context=previous.answer_text,
            provider=settings.search_provider,
        )
        session.metrics.total_queries += len(outcome.results)
        for event in outcome.events:
            yield event

        if outcome.tripped is not None:
            follow_up.failed = True
            yield SessionStatus.PARTIAL, outcome.tripped.code
            return
        follow_up.search_results = outcome.results
        if not outcome.successful:
            follow_up.failed = True
            yield SessionStatus.PARTIAL, ErrorCode.SEARCH_FAILED
            return

        earlier = [r for rnd in session.rounds[:-1] if not rnd.failed for r in rnd.search_results]
        all_questions = [sq for rnd in session.rounds for sq in rnd.sub_questions]
        try:
            async for event in self._synthesize(
                session,
                budget,
                earlier + follow_up.search_results,
                all_questions,
                round_index,
                previous_answer=previous.answer_text,
                gaps=gaps,
            ):
                yield event
        except (CostLimitExceeded, ResearchTimeout) as exc:
            follow_up.failed = True
            yield SessionStatus.PARTIAL, exc.code
            return
        except SynthesisError:
            follow_up.failed = True
            yield SessionStatus.PARTIAL, ErrorCode.SYNTHESIS_FAILED
            return

        result: Synthesis | None = self.synthesizer.result
        follow_up.synthesis = result
        if result is not None:
            session.metrics.gaps_resolved += max(len(gaps) - len(result.gaps), 0)

    async def _finish(
        self,
        session: ResearchSession,
        status: SessionStatus,
        code: ErrorCode | None,
    ) -> AsyncGenerator[SSEEvent, None]:
        """Assemble the final answer, persist the session and emit terminal events."""
        session.status = status
        session.error_code = code.value if code else None
        session.message = message_for(code if status != SessionStatus.COMPLETED else None)

        synthesis = session.last_synthesis
        if synthesis is not None:
            session.final_answer = synthesis.answer_text
            session.final_sources = list(synthesis.sources)
            session.confidence = synthesis.confidence
        elif status == SessionStatus.PARTIAL:
            session.final_answer = INSUFFICIENT_BUDGET_ANSWER

        metrics = session.metrics
        metrics.total_duration_ms = self._elapsed_ms(session.started_at)
        metrics.total_citations = len(session.final_sources)
        metrics.actual_cost_usd = session.accumulated_cost

        log_service.log_research_step(
            session.id,
            "session",
            status.value,
            {"code": session.error_code, "cost": round(session.accumulated_cost, 6)},
        )

        if code is not None:
            yield streaming.error(session.message, code.value, recoverable=status == SessionStatus.PARTIAL)

        if self.persist is not None:
            try:
                await self.persist(session)
            except Exception as exc:
                logger.error(f"Failed to persist research session {session.id}: {exc}")

        yield streaming.research_complete(session.result_payload())
