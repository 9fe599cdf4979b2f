from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from deep_research.llm_client import MessageResponse, TextBlock, Usage
from deep_research.models.research import Source
from deep_research.research_config import ResearchConfig
from deep_research.tools.search_provider import SearchResponse


def synthesis_text(
    answer: str = "Solar output depends on irradiance [1] and temperature [2].",
    *,
    gaps: list[dict[str, Any]] | None = None,
    confidence: float = 0.9,
) -> str:
    block = json.dumps({"gaps": gaps or [], "confidence": confidence})
    return f"{answer}\n\n```json\n{block}\n```"


def plan_text(*questions: str, depends: dict[int, list] | None = None) -> str:
    depends = depends or {}
    return json.dumps(
        {
            "subQuestions": [
                {
                    "question": q,
                    "reasoning": "needed",
                    "priority": "high" if i == 1 else "medium",
                    "dependsOn": depends.get(i, []),
                }
                for i, q in enumerate(questions, start=1)
            ]
        }
    )


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStream:
    def __init__(self, text: str, usage: Usage, error: Exception | None = None):
        self._text = text
        self._usage = usage
        self._error = error

    async def __aenter__(self) -> "FakeStream":
        if self._error is not None:
            raise self._error
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def _chunks(self):
        for i in range(0, len(self._text), 40):
            yield self._text[i : i + 40]

    @property
    def text_stream(self):
        return self._chunks()

    async def get_final_message(self) -> MessageResponse:
        return MessageResponse(content=[TextBlock(type="text", text=self._text)], usage=self._usage)


class FakeMessages:
    """Scripted stand-in for ``client().messages``."""

    def __init__(
        self,
        *,
        plan: str | Exception | None = None,
        syntheses: list[str | Exception] | None = None,
        usage: Usage | None = None,
    ):
        self.plan = plan
        self.syntheses = list(syntheses or [])
        self.usage = usage or Usage(input_tokens=1000, output_tokens=500)
        self.create_calls: list[dict[str, Any]] = []
        self.stream_calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> MessageResponse:
        self.create_calls.append(kwargs)
        if isinstance(self.plan, Exception):
            raise self.plan
        return MessageResponse(
            content=[TextBlock(type="text", text=self.plan or "")], usage=self.usage
        )

    def stream(self, **kwargs: Any) -> FakeStream:
        self.stream_calls.append(kwargs)
        item = self.syntheses.pop(0)
        if isinstance(item, Exception):
            return FakeStream("", self.usage, error=item)
        return FakeStream(item, self.usage)


class FakeLLMClient:
    def __init__(self, **kwargs: Any):
        self.messages = FakeMessages(**kwargs)


class FakeSearch:
    """Async search callable; questions containing a ``fail_on`` marker raise."""

    def __init__(
        self,
        *,
        fail_on: tuple[str, ...] = (),
        clock: FakeClock | None = None,
        advance_s: float = 0.0,
        delay_s: float = 0.0,
    ):
        self.fail_on = fail_on
        self.clock = clock
        self.advance_s = advance_s
        self.delay_s = delay_s
        self.calls: list[dict[str, Any]] = []
        self.active = 0
        self.max_active = 0

    async def __call__(self, query: str, *, tier, context=None) -> SearchResponse:
        self.calls.append({"query": query, "tier": tier, "context": context})
        if self.clock is not None and self.advance_s:
            self.clock.advance(self.advance_s)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay_s)
            if any(marker in query for marker in self.fail_on):
                raise RuntimeError("upstream 502")
            n = len(self.calls)
            return SearchResponse(
                summary=f"Findings for {query}",
                provider="fake",
                sources=[
                    Source(title=f"Source {n}", url=f"https://example.com/{n}", domain="example.com")
                ],
            )
        finally:
            self.active -= 1


@pytest.fixture
def config() -> ResearchConfig:
    return ResearchConfig()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
