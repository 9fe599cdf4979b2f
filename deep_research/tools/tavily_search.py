from __future__ import annotations

from typing import Any

from tavily import AsyncTavilyClient

from deep_research.config import settings
from deep_research.errors import SearchError
from deep_research.models.research import SearchTier, Source
from deep_research.tools import web_utils

DEPTH_BY_TIER = {
    SearchTier.STANDARD: "basic",
    SearchTier.PRO: "advanced",
}


async def search(
    query: str,
    *,
    tier: SearchTier = SearchTier.STANDARD,
    context: str | None = None,
) -> tuple[str, list[Source]]:
    """Execute a Tavily web search and return (summary, sources).

    Tavily has no notion of conversational context, so ``context`` is unused.
    """
    if not settings.tavily_api_key:
        raise SearchError("TAVILY_API_KEY is not configured")

    client = AsyncTavilyClient(api_key=settings.tavily_api_key)
    kwargs: dict[str, Any] = {
        "query": query,
        "search_depth": DEPTH_BY_TIER[tier],
        "max_results": settings.search_max_results,
        "include_answer": True,
    }
    response = await client.search(**kwargs)
    if not isinstance(response, dict):
        raise SearchError("Tavily returned a malformed response")

    sources: list[Source] = []
    snippets: list[str] = []
    for item in response.get("results", []) or []:
        url = item.get("url", "")
        if not web_utils.is_valid_url(url):
            continue
        sources.append(
            Source(
                title=item.get("title") or web_utils.title_from_url(url),
                url=url,
                domain=web_utils.extract_domain(url),
            )
        )
        content = (item.get("content") or "").strip()
        if content:
            snippets.append(content)

    answer = (response.get("answer") or "").strip()
    summary = answer or "\n\n".join(snippets)
    if not summary:
        raise SearchError("Tavily returned no content")
    return summary, sources
