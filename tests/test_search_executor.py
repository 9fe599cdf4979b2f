from __future__ import annotations

from dataclasses import replace

import pytest

from conftest import FakeSearch
from deep_research.errors import CostLimitExceeded
from deep_research.models.events import EventType
from deep_research.models.research import Priority, ResearchSession, SearchTier, SubQuestion
from deep_research.services import search_executor
from deep_research.services.budget import SessionBudget


def _sq(n: int, priority: Priority = Priority.MEDIUM, depends_on: list[str] | None = None) -> SubQuestion:
    return SubQuestion(
        id=f"sq-{n}",
        question=f"Question number {n}?",
        priority=priority,
        depends_on=depends_on or [],
    )


def _budget(config, clock) -> SessionBudget:
    session = ResearchSession(id="s", query="q", started_at=clock(), max_rounds=2)
    return SessionBudget(session, config, clock)


def test_select_for_dispatch_keeps_all_under_limit(config):
    sub_questions = [_sq(1), _sq(2)]
    assert search_executor.select_for_dispatch(sub_questions, 5, config) == sub_questions


def test_select_for_dispatch_truncates_by_priority_then_order(config):
    sub_questions = [
        _sq(1, Priority.LOW),
        _sq(2, Priority.MEDIUM),
        _sq(3, Priority.HIGH),
        _sq(4, Priority.MEDIUM),
        _sq(5, Priority.HIGH, depends_on=["sq-1"]),
        _sq(6, Priority.LOW),
    ]
    selected = search_executor.select_for_dispatch(sub_questions, 4, config)

    assert [sq.id for sq in selected] == ["sq-3", "sq-5", "sq-2", "sq-4"]
    # sq-1 was dropped, so the dependency on it is dropped too.
    assert selected[1].depends_on == []


@pytest.mark.asyncio
async def test_dispatch_bounds_concurrency_and_charges_successes(config, clock):
    search = FakeSearch(delay_s=0.01)
    guard = _budget(config, clock)

    outcome = await search_executor.dispatch(
        [_sq(i) for i in range(1, 8)],
        search=search,
        tier=SearchTier.STANDARD,
        guard=guard,
        config=config,
    )

    assert len(outcome.results) == config.max_queries_per_round
    assert search.max_active <= config.parallel_searches
    assert all(r.success for r in outcome.results)
    assert outcome.tripped is None
    assert guard.session.accumulated_cost == pytest.approx(5 * 0.005)
    assert guard.reserved == pytest.approx(0.0)
    started = [e for e in outcome.events if e.event == EventType.SEARCH_START]
    completed = [e for e in outcome.events if e.event == EventType.SEARCH_COMPLETE]
    assert len(started) == len(completed) == 5
    progress = [e for e in outcome.events if e.event == EventType.SEARCH_PROGRESS]
    assert [e.data["sources_found"] for e in progress] == [1] * 5


@pytest.mark.asyncio
async def test_dispatch_limit_narrows_round(config, clock):
    outcome = await search_executor.dispatch(
        [_sq(i) for i in range(1, 5)],
        search=FakeSearch(),
        tier=SearchTier.PRO,
        guard=_budget(config, clock),
        config=config,
        limit=1,
    )
    assert [r.sub_question_id for r in outcome.results] == ["sq-1"]
    assert outcome.results[0].cost_incurred == 0.02


@pytest.mark.asyncio
async def test_failed_leg_is_recorded_not_retried(config, clock):
    search = FakeSearch(fail_on=("number 2",))
    guard = _budget(config, clock)

    outcome = await search_executor.dispatch(
        [_sq(1), _sq(2), _sq(3)],
        search=search,
        tier=SearchTier.STANDARD,
        guard=guard,
        config=config,
    )

    failed = [r for r in outcome.results if not r.success]
    assert len(failed) == 1
    assert failed[0].sub_question_id == "sq-2"
    assert failed[0].summary == "search failed"
    assert failed[0].sources == ()
    assert failed[0].cost_incurred == 0
    assert len(search.calls) == 3
    assert guard.session.accumulated_cost == pytest.approx(2 * 0.005)
    assert any(e.event == EventType.SEARCH_FAILED for e in outcome.events)
    progress = [e.data["sub_question_id"] for e in outcome.events if e.event == EventType.SEARCH_PROGRESS]
    assert sorted(progress) == ["sq-1", "sq-3"]


@pytest.mark.asyncio
async def test_failed_legs_can_be_charged(config, clock):
    charged = replace(config, charge_failed_searches=True)
    guard = _budget(charged, clock)

    outcome = await search_executor.dispatch(
        [_sq(1)],
        search=FakeSearch(fail_on=("number 1",)),
        tier=SearchTier.STANDARD,
        guard=guard,
        config=charged,
    )

    assert outcome.results[0].cost_incurred == 0.005
    assert guard.session.accumulated_cost == pytest.approx(0.005)


@pytest.mark.asyncio
async def test_dependent_leg_receives_dependency_summary(config, clock):
    search = FakeSearch()
    await search_executor.dispatch(
        [_sq(1), _sq(2, depends_on=["sq-1"])],
        search=search,
        tier=SearchTier.STANDARD,
        guard=_budget(config, clock),
        config=config,
        context="Round one answer.",
    )

    by_query = {call["query"]: call for call in search.calls}
    assert by_query["Question number 1?"]["context"] == "Round one answer."
    dependent_context = by_query["Question number 2?"]["context"]
    assert "Round one answer." in dependent_context
    assert "[sq-1] Findings for Question number 1?" in dependent_context
    assert [c["query"] for c in search.calls] == ["Question number 1?", "Question number 2?"]


@pytest.mark.asyncio
async def test_cost_guard_stops_new_legs(config, clock):
    tight = replace(config, max_total_cost=0.012)
    search = FakeSearch(delay_s=0.01)
    guard = _budget(tight, clock)

    outcome = await search_executor.dispatch(
        [_sq(i) for i in range(1, 6)],
        search=search,
        tier=SearchTier.STANDARD,
        guard=guard,
        config=tight,
    )

    assert isinstance(outcome.tripped, CostLimitExceeded)
    assert len(search.calls) == 2
    assert len(outcome.successful) == 2
    assert guard.session.accumulated_cost <= tight.max_total_cost
