"""Immutable configuration for a research session.

A ``ResearchConfig`` is built once (usually from ``settings``) and handed to
the orchestrator at construction time. Per-request overrides derive a new
copy with ``dataclasses.replace`` so sessions never share mutable state.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Mapping

from deep_research.models.research import Priority, QueryComplexity, SearchTier

if TYPE_CHECKING:
    from deep_research.config import Settings


DEFAULT_COMPLEXITY_KEYWORDS: dict[QueryComplexity, tuple[str, ...]] = {
    QueryComplexity.SIMPLE: (
        "what is",
        "who is",
        "define",
        "meaning of",
        "when did",
        "where is",
    ),
    QueryComplexity.MODERATE: (
        "compare",
        "difference between",
        "how does",
        "explain",
        "why does",
        "benefits of",
        "pros and cons",
    ),
    QueryComplexity.COMPLEX: (
        "analyze",
        "evaluate",
        "comprehensive",
        "in-depth",
        "deep dive",
        "research",
        "investigate",
        "thorough",
        "detailed comparison",
        "implications of",
        "impact on",
        "impact of",
        "factors affecting",
    ),
}

DEFAULT_TRIGGER_KEYWORDS: tuple[str, ...] = (
    "research",
    "deep dive",
    "comprehensive analysis",
    "compare thoroughly",
    "investigate",
    "detailed breakdown",
    "in-depth analysis",
    "thorough research",
    "extensive research",
    "analyze in detail",
    "full analysis",
    "complete overview",
    "detailed comparison",
    "research report",
)


_MAPPING_FIELDS = (
    "priority_weights",
    "complexity_keywords",
    "estimated_time_s",
    "queries_per_complexity",
    "search_cost_per_call",
)


@dataclass(frozen=True)
class ResearchConfig:
    # Pipeline bounds
    max_rounds: int = 2
    max_queries_per_round: int = 5
    max_total_cost: float = 0.5
    parallel_searches: int = 3
    timeout_ms: int = 120000

    # Planning
    max_sub_questions: int = 5
    min_sub_questions_complex: int = 3
    min_sub_question_chars: int = 10
    fast_path_enabled: bool = True

    # Gap analysis
    max_gaps_to_address: int = 3
    min_confidence_to_complete: float = 0.8
    priority_weights: Mapping[Priority, int] = field(
        default_factory=lambda: {Priority.HIGH: 3, Priority.MEDIUM: 2, Priority.LOW: 1}
    )
    skip_round2: bool = False

    # Classification
    complexity_keywords: Mapping[QueryComplexity, tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_COMPLEXITY_KEYWORDS)
    )
    simple_length_threshold: int = 50
    moderate_length_threshold: int = 150
    estimated_time_s: Mapping[QueryComplexity, int] = field(
        default_factory=lambda: {
            QueryComplexity.SIMPLE: 10,
            QueryComplexity.MODERATE: 30,
            QueryComplexity.COMPLEX: 60,
        }
    )

    # Research trigger gate
    trigger_keywords: tuple[str, ...] = DEFAULT_TRIGGER_KEYWORDS
    min_research_query_length: int = 20

    # Cost model (USD)
    queries_per_complexity: Mapping[QueryComplexity, int] = field(
        default_factory=lambda: {
            QueryComplexity.SIMPLE: 1,
            QueryComplexity.MODERATE: 3,
            QueryComplexity.COMPLEX: 5,
        }
    )
    search_cost_per_call: Mapping[SearchTier, float] = field(
        default_factory=lambda: {SearchTier.STANDARD: 0.005, SearchTier.PRO: 0.02}
    )
    llm_input_cost_per_1k: float = 0.003
    llm_output_cost_per_1k: float = 0.015
    planning_input_tokens: int = 1000
    planning_output_tokens: int = 500
    synthesis_input_tokens_per_1k_chars: int = 300
    synthesis_output_tokens: int = 2000
    round2_multiplier: float = 1.5
    charge_failed_searches: bool = False

    def __post_init__(self) -> None:
        # Copies made by ``replace`` share these tables; keep them read-only.
        for name in _MAPPING_FIELDS:
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

    @classmethod
    def from_settings(cls, source: Settings) -> ResearchConfig:
        return cls(
            max_rounds=max(int(source.research_max_rounds), 1),
            max_queries_per_round=max(int(source.research_max_queries_per_round), 1),
            max_total_cost=float(source.research_max_total_cost),
            parallel_searches=max(int(source.research_parallel_searches), 1),
            timeout_ms=max(int(source.research_timeout_ms), 1),
            fast_path_enabled=bool(source.research_fast_path_enabled),
            min_research_query_length=int(source.research_min_query_length),
            search_cost_per_call={
                SearchTier.STANDARD: float(source.search_cost_standard),
                SearchTier.PRO: float(source.search_cost_pro),
            },
            llm_input_cost_per_1k=float(source.llm_input_cost_per_1k),
            llm_output_cost_per_1k=float(source.llm_output_cost_per_1k),
            charge_failed_searches=bool(source.research_charge_failed_searches),
        )

    def with_overrides(
        self,
        *,
        max_cost: float | None = None,
        skip_round2: bool | None = None,
    ) -> ResearchConfig:
        """Derive a per-request copy; ``max_cost`` can only lower the ceiling."""
        changes: dict[str, object] = {}
        if max_cost is not None:
            changes["max_total_cost"] = min(float(max_cost), self.max_total_cost)
        if skip_round2 is not None:
            changes["skip_round2"] = bool(skip_round2)
        return replace(self, **changes) if changes else self

    def priority_weight(self, priority: Priority) -> int:
        return self.priority_weights.get(priority, 0)

    def recommended_tier(self, complexity: QueryComplexity) -> SearchTier:
        return SearchTier.PRO if complexity == QueryComplexity.COMPLEX else SearchTier.STANDARD
