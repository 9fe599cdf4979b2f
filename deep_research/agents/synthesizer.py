from __future__ import annotations

import time
from typing import Any, AsyncGenerator

from loguru import logger

from deep_research.errors import ResponseParseError, SynthesisError
from deep_research.llm_client import Usage, client as llm_client, get_model
from deep_research.models.events import SSEEvent
from deep_research.models.research import Gap, SearchResult, Source, SubQuestion, Synthesis
from deep_research.research_config import ResearchConfig
from deep_research.services import logger as log_service
from deep_research.services import streaming
from deep_research.services.citations import collect_sources, format_source_list, renumber_citations
from deep_research.services.cost import llm_call_cost
from deep_research.services.prompt_store import render_block, render_prompt
from deep_research.services.response_parser import parse_synthesis_response


def format_notes(
    results: list[SearchResult],
    sources: list[Source],
    sub_questions: list[SubQuestion] | None = None,
) -> str:
    """Render successful search results as numbered research notes."""
    questions = {sq.id: sq.question for sq in sub_questions or []}
    numbers = {s.url: i for i, s in enumerate(sources, start=1)}
    blocks: list[str] = []
    for result in results:
        if not result.success:
            continue
        heading = questions.get(result.sub_question_id, result.sub_question_id)
        cited = sorted({numbers[s.url] for s in result.sources if s.url in numbers})
        block = f"## {heading}\n{result.summary.strip()}"
        if cited:
            block += "\nSources: " + ", ".join(f"[{n}]" for n in cited)
        blocks.append(block)
    return "\n\n".join(blocks)


def _format_gaps(gaps: list[Gap] | None) -> str:
    if not gaps:
        return ""
    return "\n".join(f"- {g.description} (priority: {g.priority.value})" for g in gaps)


class Synthesizer:
    """Streams an LLM synthesis over one round of search results.

    ``run`` is an async generator yielding ``synthesize_progress`` events; the
    parsed ``Synthesis`` is available on ``result`` once it finishes.
    """

    def __init__(self, config: ResearchConfig, model: str | None = None, client: Any = None):
        self.config = config
        self.model = model or get_model()
        self.client = client
        self.result: Synthesis | None = None
        self.last_usage: Usage | None = None

    async def run(
        self,
        query: str,
        results: list[SearchResult],
        *,
        round_index: int,
        previous_answer: str | None = None,
        gaps: list[Gap] | None = None,
        sub_questions: list[SubQuestion] | None = None,
    ) -> AsyncGenerator[SSEEvent, None]:
        self.result = None
        self.last_usage = None

        sources = collect_sources(results)
        notes = format_notes(results, sources, sub_questions)
        if not notes:
            raise SynthesisError("no successful search results to synthesize")

        prompt = render_prompt(
            "synthesis.user",
            query=query,
            sources=format_source_list(sources),
            notes=notes,
            gap_context=render_block("synthesis.gap_context", gaps=_format_gaps(gaps)),
            previous_context=render_block("synthesis.previous_context", previous_answer=previous_answer),
        )

        active_client = self.client or llm_client()
        t0 = time.monotonic()
        try:
            async with active_client.messages.stream(
                model=self.model,
                max_tokens=4096,
                system=render_prompt("synthesis.system"),
                messages=[{"role": "user", "content": prompt}],
            ) as stream:
                async for chunk in stream.text_stream:
                    yield streaming.synthesize_progress(chunk)
                message = await stream.get_final_message()
        except Exception as exc:
            log_service.log_llm_call(
                model=self.model,
                caller=f"synthesizer.round{round_index}",
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(exc),
            )
            raise SynthesisError(f"synthesis LLM call failed: {exc}") from exc

        self.last_usage = message.usage
        log_service.log_llm_call(
            model=self.model,
            caller=f"synthesizer.round{round_index}",
            input_tokens=message.usage.input_tokens,
            output_tokens=message.usage.output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
            cost_usd=llm_call_cost(message.usage.input_tokens, message.usage.output_tokens, self.config),
        )

        try:
            prose, assessment = parse_synthesis_response(message.text)
        except ResponseParseError:
            logger.warning(f"Round {round_index} synthesis response could not be parsed")
            raise

        answer, used_sources = renumber_citations(prose, sources)
        self.result = Synthesis(
            answer_text=answer,
            confidence=assessment.confidence,
            gaps=assessment.gaps,
            sources=used_sources,
        )
        logger.info(
            f"Round {round_index} synthesis: {len(used_sources)} sources, "
            f"{len(assessment.gaps)} gaps, confidence {assessment.confidence:.2f}"
        )
