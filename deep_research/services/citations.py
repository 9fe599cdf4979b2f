from __future__ import annotations

import re

from deep_research.models.research import SearchResult, Source

_MARKER_RE = re.compile(r"\[(\d+)\]")


def collect_sources(results: list[SearchResult]) -> list[Source]:
    """Deduplicate sources of successful results by URL, keeping first-seen order."""
    seen: set[str] = set()
    sources: list[Source] = []
    for result in results:
        if not result.success:
            continue
        for source in result.sources:
            if source.url in seen:
                continue
            seen.add(source.url)
            sources.append(source)
    return sources


def format_source_list(sources: list[Source]) -> str:
    if not sources:
        return "(no sources)"
    return "\n".join(f"[{i}] {s.title} - {s.url}" for i, s in enumerate(sources, start=1))


def cited_numbers(text: str) -> list[int]:
    """Citation numbers in order of first appearance."""
    numbers: list[int] = []
    for match in _MARKER_RE.finditer(text):
        n = int(match.group(1))
        if n not in numbers:
            numbers.append(n)
    return numbers


def renumber_citations(text: str, sources: list[Source]) -> tuple[str, list[Source]]:
    """Keep only cited sources and renumber markers to match the trimmed list.

    Markers pointing outside ``sources`` are removed. When the text cites
    nothing, the full list is kept as-is.
    """
    used = [n for n in cited_numbers(text) if 1 <= n <= len(sources)]
    if not used:
        return _MARKER_RE.sub("", text), list(sources)

    mapping = {old: new for new, old in enumerate(used, start=1)}

    def _replace(match: re.Match[str]) -> str:
        new = mapping.get(int(match.group(1)))
        return f"[{new}]" if new is not None else ""

    return _MARKER_RE.sub(_replace, text), [sources[n - 1] for n in used]
