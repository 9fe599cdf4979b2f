from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    CLASSIFICATION_FAILED = "CLASSIFICATION_FAILED"
    PLANNING_FAILED = "PLANNING_FAILED"
    SEARCH_FAILED = "SEARCH_FAILED"
    SYNTHESIS_FAILED = "SYNTHESIS_FAILED"
    TIMEOUT = "TIMEOUT"
    COST_LIMIT_EXCEEDED = "COST_LIMIT_EXCEEDED"
    RATE_LIMITED = "RATE_LIMITED"
    UNKNOWN = "UNKNOWN"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.CLASSIFICATION_FAILED: "Unable to analyze the complexity of your query. Please try again.",
    ErrorCode.PLANNING_FAILED: "Unable to plan the research approach. Please try rephrasing your question.",
    ErrorCode.SEARCH_FAILED: "Some searches failed. Continuing with available results.",
    ErrorCode.SYNTHESIS_FAILED: "Unable to synthesize the research results. Please try again.",
    ErrorCode.TIMEOUT: "Research took too long. Returning partial results.",
    ErrorCode.COST_LIMIT_EXCEEDED: "Research cost limit reached. Returning available results.",
    ErrorCode.RATE_LIMITED: "API rate limit reached. Please try again in a moment.",
    ErrorCode.UNKNOWN: "An unexpected error occurred during research.",
}

COMPLETED_MESSAGE = "Research complete."
INSUFFICIENT_BUDGET_ANSWER = (
    "Research stopped before an answer could be synthesized: insufficient budget or time."
)


def message_for(code: ErrorCode | None) -> str:
    if code is None:
        return COMPLETED_MESSAGE
    return ERROR_MESSAGES.get(code, ERROR_MESSAGES[ErrorCode.UNKNOWN])


class ResearchError(Exception):
    """Base class for research pipeline failures."""

    code: ErrorCode = ErrorCode.UNKNOWN

    @property
    def user_message(self) -> str:
        return message_for(self.code)


class PlanningError(ResearchError):
    code = ErrorCode.PLANNING_FAILED


class SearchError(ResearchError):
    code = ErrorCode.SEARCH_FAILED


class RateLimitedError(SearchError):
    code = ErrorCode.RATE_LIMITED


class SynthesisError(ResearchError):
    code = ErrorCode.SYNTHESIS_FAILED


class ResponseParseError(SynthesisError):
    """Raised when an LLM response does not contain a readable JSON block."""


class CostLimitExceeded(ResearchError):
    code = ErrorCode.COST_LIMIT_EXCEEDED


class ResearchTimeout(ResearchError):
    code = ErrorCode.TIMEOUT
