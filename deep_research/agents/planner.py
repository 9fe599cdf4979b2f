from __future__ import annotations

import time
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from deep_research.errors import PlanningError, ResponseParseError
from deep_research.llm_client import Usage, client as llm_client, get_planner_model
from deep_research.models.research import Priority, QueryComplexity, SubQuestion
from deep_research.research_config import ResearchConfig
from deep_research.services import logger as log_service
from deep_research.services.cost import llm_call_cost
from deep_research.services.prompt_store import render_block, render_prompt
from deep_research.services.response_parser import extract_json_object

FALLBACK_REASONING = "Direct search for the research query"


class _PlannedQuestion(BaseModel):
    question: str
    reasoning: str = ""
    priority: Priority = Priority.MEDIUM
    depends_on: list[str | int] = Field(default_factory=list, alias="dependsOn")

    model_config = {"populate_by_name": True}

    @field_validator("priority", mode="before")
    @classmethod
    def _lower_priority(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("depends_on", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class _PlannerOutput(BaseModel):
    sub_questions: list[_PlannedQuestion] = Field(alias="subQuestions", min_length=1)

    model_config = {"populate_by_name": True}


def fallback_plan(query: str) -> list[SubQuestion]:
    """Single sub-question plan that searches the raw query."""
    return [
        SubQuestion(
            id="sq-1",
            question=query.strip(),
            reasoning=FALLBACK_REASONING,
            priority=Priority.HIGH,
        )
    ]


def _dependency_position(ref: str | int) -> int | None:
    """1-based position referenced by ``"2"``, ``2`` or ``"sq-2"``; None if unreadable."""
    text = str(ref).strip().lower()
    if text.startswith("sq-"):
        text = text[3:]
    return int(text) if text.isdigit() else None


def build_sub_questions(
    planned: list[_PlannedQuestion],
    complexity: QueryComplexity,
    config: ResearchConfig,
) -> list[SubQuestion]:
    """Filter, cap and number planner output; dependencies must point backwards."""
    kept: list[tuple[int, _PlannedQuestion]] = [
        (position, item)
        for position, item in enumerate(planned, start=1)
        if len(item.question.strip()) >= config.min_sub_question_chars
    ][: config.max_sub_questions]

    if not kept:
        raise PlanningError("planner returned no usable sub-questions")

    minimum = config.min_sub_questions_complex if complexity == QueryComplexity.COMPLEX else 1
    if len(kept) < minimum:
        logger.warning(f"Planner produced {len(kept)} sub-questions, minimum is {minimum}")

    position_to_id = {position: f"sq-{index}" for index, (position, _) in enumerate(kept, start=1)}
    all_positions = range(1, len(planned) + 1)

    sub_questions: list[SubQuestion] = []
    for index, (position, item) in enumerate(kept, start=1):
        depends_on: list[str] = []
        for ref in item.depends_on:
            dep_position = _dependency_position(ref)
            if dep_position is None or dep_position not in all_positions:
                raise PlanningError(f"sq-{index} depends on unknown question {ref!r}")
            if dep_position >= position:
                raise PlanningError(f"sq-{index} depends on a later question {ref!r}")
            dep_id = position_to_id.get(dep_position)
            # References to filtered-out questions are dropped.
            if dep_id and dep_id not in depends_on:
                depends_on.append(dep_id)

        sub_questions.append(
            SubQuestion(
                id=f"sq-{index}",
                question=item.question.strip(),
                reasoning=item.reasoning.strip() or "Addresses a key aspect of the research query",
                priority=item.priority,
                depends_on=depends_on,
            )
        )
    return sub_questions


class Planner:
    """Decomposes a research query into prioritized, dependency-ordered sub-questions."""

    def __init__(self, config: ResearchConfig, model: str | None = None, client: Any = None):
        self.config = config
        self.model = model or get_planner_model()
        self.client = client
        self.last_usage: Usage | None = None

    async def plan(
        self,
        query: str,
        complexity: QueryComplexity,
        existing_context: str | None = None,
    ) -> list[SubQuestion]:
        self.last_usage = None
        prompt = render_prompt(
            "planner.user",
            query=query,
            complexity=complexity.value,
            guidance=render_prompt(f"planner.guidance.{complexity.value}"),
            context_block=render_block("planner.context_block", context=existing_context),
        )

        active_client = self.client or llm_client()
        t0 = time.monotonic()
        try:
            response = await active_client.messages.create(
                model=self.model,
                max_tokens=2048,
                system=render_prompt("planner.system"),
                messages=[{"role": "user", "content": prompt}],
            )
        except Exception as exc:
            log_service.log_llm_call(
                model=self.model,
                caller="planner",
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(exc),
            )
            raise PlanningError(f"planner LLM call failed: {exc}") from exc

        self.last_usage = response.usage
        log_service.log_llm_call(
            model=self.model,
            caller="planner",
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
            cost_usd=llm_call_cost(
                response.usage.input_tokens, response.usage.output_tokens, self.config
            ),
        )

        try:
            payload = extract_json_object(response.text)
            parsed = _PlannerOutput.model_validate(payload)
        except ResponseParseError as exc:
            raise PlanningError(f"planner response is not JSON: {exc}") from exc
        except ValidationError as exc:
            raise PlanningError(f"planner response failed validation: {exc.error_count()} error(s)") from exc

        sub_questions = build_sub_questions(parsed.sub_questions, complexity, self.config)
        logger.info(f"Planned {len(sub_questions)} sub-questions for {complexity.value} query")
        return sub_questions
