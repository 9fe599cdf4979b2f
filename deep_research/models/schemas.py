from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from deep_research.models.research import QueryComplexity


# --- Requests ---


class ResearchOptions(BaseModel):
    force_complexity: QueryComplexity | None = Field(default=None, alias="forceComplexity")
    skip_round2: bool = Field(default=False, alias="skipRound2")
    max_cost: float | None = Field(default=None, alias="maxCost", gt=0)

    model_config = {"populate_by_name": True}


class ResearchRequest(BaseModel):
    query: str
    force_deep_research: bool = Field(default=False, alias="forceDeepResearch")
    options: ResearchOptions = Field(default_factory=ResearchOptions)

    model_config = {"populate_by_name": True}


class EstimateRequest(BaseModel):
    query: str
    use_pro_model: bool | None = Field(default=None, alias="useProModel")

    model_config = {"populate_by_name": True}


# --- Responses ---


class EstimateResponse(BaseModel):
    complexity: QueryComplexity
    matched_keywords: list[str]
    estimated_time_s: int
    estimated_cost_usd: float
    suggested_tier: str
    should_trigger_research: bool


class SessionRecordResponse(BaseModel):
    session: dict[str, Any]
    plans: list[dict[str, Any]] = []
    notes: list[dict[str, Any]] = []
    gaps: list[dict[str, Any]] = []
    metrics: dict[str, Any] | None = None
