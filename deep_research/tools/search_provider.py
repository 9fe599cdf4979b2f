from __future__ import annotations

from dataclasses import dataclass, field

from deep_research.config import settings
from deep_research.models.research import SearchTier, Source
from deep_research.tools import perplexity_search, tavily_search


@dataclass
class SearchResponse:
    summary: str
    provider: str
    sources: list[Source] = field(default_factory=list)


async def search(
    query: str,
    *,
    tier: SearchTier = SearchTier.STANDARD,
    context: str | None = None,
) -> SearchResponse:
    provider = settings.search_provider.lower().strip()

    if provider == "perplexity":
        summary, sources = await perplexity_search.search(query, tier=tier, context=context)
        return SearchResponse(summary=summary, sources=sources, provider="perplexity")

    if provider == "tavily":
        summary, sources = await tavily_search.search(query, tier=tier, context=context)
        return SearchResponse(summary=summary, sources=sources, provider="tavily")

    raise ValueError(f"Unsupported SEARCH_PROVIDER: {settings.search_provider}")
