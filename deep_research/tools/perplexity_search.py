from __future__ import annotations

from typing import Any

import httpx

from deep_research.config import settings
from deep_research.errors import RateLimitedError, SearchError
from deep_research.models.research import SearchTier, Source
from deep_research.services.prompt_store import render_block, render_prompt
from deep_research.tools import web_utils

MODEL_BY_TIER = {
    SearchTier.STANDARD: "sonar",
    SearchTier.PRO: "sonar-pro",
}


def _sources_from_payload(payload: dict[str, Any]) -> list[Source]:
    sources: list[Source] = []
    seen: set[str] = set()

    for item in payload.get("search_results") or []:
        url = item.get("url") if isinstance(item, dict) else None
        if not isinstance(url, str) or not web_utils.is_valid_url(url) or url in seen:
            continue
        seen.add(url)
        title = (item.get("title") or "").strip() or web_utils.title_from_url(url)
        sources.append(Source(title=title, url=url, domain=web_utils.extract_domain(url)))

    for url in payload.get("citations") or []:
        if not isinstance(url, str) or not web_utils.is_valid_url(url) or url in seen:
            continue
        seen.add(url)
        sources.append(
            Source(
                title=web_utils.title_from_url(url),
                url=url,
                domain=web_utils.extract_domain(url),
            )
        )
    return sources


async def search(
    query: str,
    *,
    tier: SearchTier = SearchTier.STANDARD,
    context: str | None = None,
) -> tuple[str, list[Source]]:
    """Ask Perplexity Sonar a single question and return (summary, sources)."""
    if not settings.perplexity_api_key:
        raise SearchError("PERPLEXITY_API_KEY is not configured")

    system = render_prompt(
        "search.system",
        context_block=render_block("search.context_block", context=context),
    )
    body = {
        "model": MODEL_BY_TIER[tier],
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": query},
        ],
    }

    async with httpx.AsyncClient(timeout=settings.search_timeout_seconds) as client:
        response = await client.post(
            f"{settings.perplexity_base_url.rstrip('/')}/chat/completions",
            json=body,
            headers={
                "Authorization": f"Bearer {settings.perplexity_api_key}",
                "Content-Type": "application/json",
            },
        )
        if response.status_code == 429:
            raise RateLimitedError("Perplexity rate limit reached")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SearchError(f"Perplexity API error: {response.status_code}") from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise SearchError("Perplexity returned a non-JSON response") from exc

    try:
        content = payload["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise SearchError("Perplexity response has no message content") from exc
    if not isinstance(content, str) or not content.strip():
        raise SearchError("Perplexity response content is empty")

    return content.strip(), _sources_from_payload(payload)
