"""USD cost model: up-front session estimates and per-call ledger prices."""
from __future__ import annotations

from deep_research.models.research import QueryComplexity, SearchTier
from deep_research.research_config import ResearchConfig

# Assumed note volume (in thousands of characters) for an up-front synthesis estimate.
_ESTIMATE_NOTE_KCHARS = 5


def search_call_cost(tier: SearchTier, config: ResearchConfig) -> float:
    return config.search_cost_per_call.get(tier, config.search_cost_per_call[SearchTier.STANDARD])


def llm_call_cost(input_tokens: int, output_tokens: int, config: ResearchConfig) -> float:
    return (
        max(input_tokens, 0) * config.llm_input_cost_per_1k
        + max(output_tokens, 0) * config.llm_output_cost_per_1k
    ) / 1000


def estimate_planning_cost(config: ResearchConfig) -> float:
    return llm_call_cost(config.planning_input_tokens, config.planning_output_tokens, config)


def estimate_synthesis_cost(note_chars: int, config: ResearchConfig) -> float:
    """Projected cost of one synthesis call over ``note_chars`` characters of notes."""
    input_tokens = int(max(note_chars, 0) / 1000 * config.synthesis_input_tokens_per_1k_chars)
    return llm_call_cost(input_tokens, config.synthesis_output_tokens, config)


def estimate_session_cost(
    complexity: QueryComplexity,
    use_pro_model: bool,
    config: ResearchConfig,
) -> float:
    tier = SearchTier.PRO if use_pro_model else SearchTier.STANDARD
    search_cost = config.queries_per_complexity.get(complexity, 1) * search_call_cost(tier, config)
    synthesis_cost = (
        config.synthesis_input_tokens_per_1k_chars * _ESTIMATE_NOTE_KCHARS * config.llm_input_cost_per_1k
        + config.synthesis_output_tokens * config.llm_output_cost_per_1k
    ) / 1000
    total = search_cost + synthesis_cost
    if complexity == QueryComplexity.COMPLEX:
        total *= config.round2_multiplier
    return total
