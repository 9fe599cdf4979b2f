from __future__ import annotations

from deep_research.models.research import Gap, ResearchSession, SubQuestion, Synthesis
from deep_research.research_config import ResearchConfig


def should_continue(
    session: ResearchSession,
    synthesis: Synthesis,
    config: ResearchConfig,
    now: float,
) -> bool:
    """Whether another gap-filling round is warranted and affordable."""
    elapsed_ms = (now - session.started_at) * 1000
    return (
        session.rounds_completed < min(session.max_rounds, config.max_rounds)
        and synthesis.confidence < config.min_confidence_to_complete
        and len(synthesis.gaps) > 0
        and session.accumulated_cost < config.max_total_cost
        and elapsed_ms < config.timeout_ms
    )


def select_gaps(gaps: list[Gap], config: ResearchConfig, limit: int | None = None) -> list[Gap]:
    """Highest priority first; ties keep their reported order."""
    limit = config.max_gaps_to_address if limit is None else limit
    # sorted() is stable.
    ranked = sorted(gaps, key=lambda g: -config.priority_weight(g.priority))
    return ranked[: max(limit, 0)]


def gaps_to_sub_questions(gaps: list[Gap], round_index: int = 2) -> list[SubQuestion]:
    return [
        SubQuestion(
            id=f"sq-r{round_index}-{i}",
            question=gap.suggested_query,
            reasoning=gap.description,
            priority=gap.priority,
        )
        for i, gap in enumerate(gaps, start=1)
    ]
