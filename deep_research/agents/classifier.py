"""Deterministic query complexity classification and the research trigger gate."""
from __future__ import annotations

from deep_research.models.research import ClassificationResult, QueryComplexity
from deep_research.research_config import ResearchConfig

# Highest precedence first.
_PRECEDENCE = (QueryComplexity.COMPLEX, QueryComplexity.MODERATE, QueryComplexity.SIMPLE)


def _matched_keywords(query: str, config: ResearchConfig) -> dict[QueryComplexity, list[str]]:
    lowered = query.lower()
    return {
        complexity: [kw for kw in config.complexity_keywords.get(complexity, ()) if kw in lowered]
        for complexity in _PRECEDENCE
    }


def _by_length(query: str, config: ResearchConfig) -> QueryComplexity:
    length = len(query.strip())
    if length < config.simple_length_threshold:
        return QueryComplexity.SIMPLE
    if length <= config.moderate_length_threshold:
        return QueryComplexity.MODERATE
    return QueryComplexity.COMPLEX


def classify(query: str, config: ResearchConfig) -> QueryComplexity:
    matches = _matched_keywords(query, config)
    for complexity in _PRECEDENCE:
        if matches[complexity]:
            return complexity
    return _by_length(query, config)


def classify_query(
    query: str,
    config: ResearchConfig,
    force_complexity: QueryComplexity | None = None,
) -> ClassificationResult:
    """Classify a query and attach the time and tier recommendations for it."""
    matched: list[str] = []
    if force_complexity is not None:
        complexity = force_complexity
        reasoning = f"Complexity forced to {complexity.value}"
    else:
        matches = _matched_keywords(query, config)
        complexity = None
        for level in _PRECEDENCE:
            if matches[level]:
                complexity = level
                matched = matches[level]
                break
        if complexity is not None:
            reasoning = f"Matched {complexity.value} keywords: {', '.join(matched)}"
        else:
            complexity = _by_length(query, config)
            reasoning = f"No keyword match; {len(query.strip())} characters"

    return ClassificationResult(
        complexity=complexity,
        reasoning=reasoning,
        estimated_time_s=config.estimated_time_s.get(complexity, 30),
        suggested_tier=config.recommended_tier(complexity),
        matched_keywords=matched,
    )


def should_trigger_research(query: str, config: ResearchConfig) -> bool:
    trimmed = query.strip()
    if len(trimmed) < config.min_research_query_length:
        return False
    lowered = trimmed.lower()
    return any(keyword in lowered for keyword in config.trigger_keywords)
