from __future__ import annotations

from dataclasses import replace

import pytest

from conftest import FakeLLMClient, plan_text
from deep_research.agents.planner import Planner, fallback_plan
from deep_research.errors import PlanningError
from deep_research.models.research import Priority, QueryComplexity


@pytest.mark.asyncio
async def test_plan_assigns_ids_and_normalizes_numeric_dependencies(config):
    llm = FakeLLMClient(
        plan=plan_text(
            "What drives lithium prices globally?",
            "How do lithium prices affect EV costs?",
            "Which EV makers hedge lithium exposure?",
            depends={2: ["1"], 3: [1, "sq-2"]},
        )
    )
    planner = Planner(config, model="test-model", client=llm)

    sub_questions = await planner.plan("Analyze lithium and EVs", QueryComplexity.COMPLEX)

    assert [sq.id for sq in sub_questions] == ["sq-1", "sq-2", "sq-3"]
    assert sub_questions[0].priority == Priority.HIGH
    assert sub_questions[1].depends_on == ["sq-1"]
    assert sub_questions[2].depends_on == ["sq-1", "sq-2"]
    assert planner.last_usage is not None


@pytest.mark.asyncio
async def test_plan_passes_existing_context_to_prompt(config):
    llm = FakeLLMClient(plan=plan_text("What drives lithium prices globally?"))
    planner = Planner(config, model="test-model", client=llm)

    await planner.plan("q", QueryComplexity.MODERATE, existing_context="Prices doubled in 2022.")

    prompt = llm.messages.create_calls[0]["messages"][0]["content"]
    assert "Prices doubled in 2022." in prompt
    assert "Complexity Level: moderate" in prompt


@pytest.mark.asyncio
async def test_short_questions_are_dropped_and_list_capped(config):
    questions = ["Too short", *[f"Sufficiently long question number {i}?" for i in range(1, 8)]]
    planner = Planner(config, model="m", client=FakeLLMClient(plan=plan_text(*questions)))

    sub_questions = await planner.plan("q", QueryComplexity.COMPLEX)

    assert len(sub_questions) == config.max_sub_questions
    assert sub_questions[0].question == "Sufficiently long question number 1?"
    assert sub_questions[0].id == "sq-1"


@pytest.mark.asyncio
async def test_dependency_on_later_question_is_rejected(config):
    llm = FakeLLMClient(
        plan=plan_text(
            "First sufficiently long question?",
            "Second sufficiently long question?",
            depends={1: ["2"]},
        )
    )
    with pytest.raises(PlanningError):
        await Planner(config, model="m", client=llm).plan("q", QueryComplexity.MODERATE)


@pytest.mark.asyncio
async def test_dependency_on_unknown_question_is_rejected(config):
    llm = FakeLLMClient(
        plan=plan_text("First sufficiently long question?", depends={1: ["sq-9"]})
    )
    with pytest.raises(PlanningError):
        await Planner(config, model="m", client=llm).plan("q", QueryComplexity.MODERATE)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        "I cannot help with that.",
        '{"subQuestions": []}',
        '{"subQuestions": [{"reasoning": "missing question"}]}',
        '{"subQuestions": [{"question": "tiny"}]}',
    ],
)
async def test_unusable_responses_raise_planning_error(config, response):
    planner = Planner(config, model="m", client=FakeLLMClient(plan=response))
    with pytest.raises(PlanningError):
        await planner.plan("q", QueryComplexity.MODERATE)


@pytest.mark.asyncio
async def test_llm_failure_raises_planning_error(config):
    planner = Planner(config, model="m", client=FakeLLMClient(plan=RuntimeError("boom")))
    with pytest.raises(PlanningError):
        await planner.plan("q", QueryComplexity.COMPLEX)
    assert planner.last_usage is None


@pytest.mark.asyncio
async def test_min_sub_question_chars_is_configurable(config):
    planner = Planner(
        replace(config, min_sub_question_chars=3),
        model="m",
        client=FakeLLMClient(plan=plan_text("Why tea?")),
    )
    sub_questions = await planner.plan("q", QueryComplexity.SIMPLE)
    assert [sq.question for sq in sub_questions] == ["Why tea?"]


def test_fallback_plan_uses_raw_query():
    plan = fallback_plan("  Investigate coral bleaching  ")

    assert len(plan) == 1
    assert plan[0].id == "sq-1"
    assert plan[0].question == "Investigate coral bleaching"
    assert plan[0].depends_on == []
