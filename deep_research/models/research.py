from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class QueryComplexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SessionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class SearchTier(str, Enum):
    STANDARD = "standard"
    PRO = "pro"


class SubQuestion(BaseModel):
    """A decomposed, independently searchable piece of the original query."""
    id: str
    question: str
    reasoning: str = ""
    priority: Priority = Priority.MEDIUM
    depends_on: list[str] = Field(default_factory=list)


class Gap(BaseModel):
    """Missing information reported by the synthesizer."""
    description: str
    suggested_query: str
    priority: Priority = Priority.MEDIUM


@dataclass(frozen=True, slots=True)
class Source:
    title: str
    url: str
    domain: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"title": self.title, "url": self.url, "domain": self.domain}


@dataclass(frozen=True, slots=True)
class SearchResult:
    sub_question_id: str
    summary: str
    sources: tuple[Source, ...] = ()
    cost_incurred: float = 0.0
    success: bool = True
    error: str | None = None
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "sub_question_id": self.sub_question_id,
            "summary": self.summary,
            "sources": [s.to_dict() for s in self.sources],
            "cost_incurred": self.cost_incurred,
            "success": self.success,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@dataclass
class Synthesis:
    answer_text: str
    confidence: float
    gaps: list[Gap] = field(default_factory=list)
    sources: list[Source] = field(default_factory=list)


@dataclass
class Round:
    index: int
    sub_questions: list[SubQuestion] = field(default_factory=list)
    search_results: list[SearchResult] = field(default_factory=list)
    synthesis: Synthesis | None = None
    failed: bool = False

    @property
    def successful_results(self) -> list[SearchResult]:
        return [r for r in self.search_results if r.success]


@dataclass
class ClassificationResult:
    complexity: QueryComplexity
    reasoning: str
    estimated_time_s: int
    suggested_tier: SearchTier
    matched_keywords: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "complexity": self.complexity.value,
            "reasoning": self.reasoning,
            "estimated_time_s": self.estimated_time_s,
            "suggested_tier": self.suggested_tier.value,
            "matched_keywords": self.matched_keywords,
        }


@dataclass
class SessionMetrics:
    total_duration_ms: int = 0
    classification_duration_ms: int = 0
    planning_duration_ms: int = 0
    search_duration_ms: int = 0
    synthesis_duration_ms: int = 0
    round2_duration_ms: int | None = None
    total_queries: int = 0
    total_citations: int = 0
    gaps_found: int = 0
    gaps_resolved: int = 0
    parallelization_efficiency: float = 0.0
    estimated_cost_usd: float = 0.0
    actual_cost_usd: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_duration_ms": self.total_duration_ms,
            "classification_duration_ms": self.classification_duration_ms,
            "planning_duration_ms": self.planning_duration_ms,
            "search_duration_ms": self.search_duration_ms,
            "synthesis_duration_ms": self.synthesis_duration_ms,
            "round2_duration_ms": self.round2_duration_ms,
            "total_queries": self.total_queries,
            "total_citations": self.total_citations,
            "gaps_found": self.gaps_found,
            "gaps_resolved": self.gaps_resolved,
            "parallelization_efficiency": round(self.parallelization_efficiency, 2),
            "estimated_cost_usd": round(self.estimated_cost_usd, 4),
            "actual_cost_usd": round(self.actual_cost_usd, 4),
        }


@dataclass
class ResearchSession:
    """One user query's research lifecycle."""

    id: str
    query: str
    started_at: float
    max_rounds: int
    complexity: QueryComplexity | None = None
    status: SessionStatus = SessionStatus.RUNNING
    rounds: list[Round] = field(default_factory=list)
    accumulated_cost: float = 0.0
    error_code: str | None = None
    message: str = ""
    final_answer: str = ""
    final_sources: list[Source] = field(default_factory=list)
    confidence: float = 0.0
    metrics: SessionMetrics = field(default_factory=SessionMetrics)

    @property
    def rounds_completed(self) -> int:
        return sum(1 for r in self.rounds if r.synthesis is not None and not r.failed)

    @property
    def last_synthesis(self) -> Synthesis | None:
        for completed_round in reversed(self.rounds):
            if completed_round.synthesis is not None and not completed_round.failed:
                return completed_round.synthesis
        return None

    def set_complexity(self, complexity: QueryComplexity) -> None:
        if self.complexity is not None and self.complexity != complexity:
            raise ValueError("Session complexity is already set")
        self.complexity = complexity

    def add_cost(self, amount: float) -> None:
        if amount < 0:
            raise ValueError("Cost increments must be non-negative")
        self.accumulated_cost += amount

    def result_payload(self) -> dict[str, Any]:
        return {
            "sessionId": self.id,
            "answerText": self.final_answer,
            "sources": [s.to_dict() for s in self.final_sources],
            "confidence": self.confidence,
            "roundsCompleted": self.rounds_completed,
            "costIncurred": round(self.accumulated_cost, 6),
            "status": self.status.value,
            "message": self.message,
            "complexity": self.complexity.value if self.complexity else None,
            "metrics": self.metrics.to_dict(),
        }
