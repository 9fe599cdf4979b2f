from __future__ import annotations

import re
from urllib.parse import urlparse


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except ValueError:
        return False


def extract_domain(url: str) -> str:
    """Host name without a leading ``www.``, for display."""
    try:
        netloc = urlparse(url).netloc
    except ValueError:
        return url
    return re.sub(r"^www\.", "", netloc) or url


def title_from_url(url: str) -> str:
    """Derive a readable title from the last path segment of a URL."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "Source"
    parts = [p for p in parsed.path.split("/") if p]
    if not parts:
        return extract_domain(url) or "Source"
    slug = re.sub(r"\.(html?|php|aspx?)$", "", parts[-1], flags=re.IGNORECASE)
    words = [w for w in re.split(r"[-_\s]+", slug) if w]
    if not words:
        return extract_domain(url) or "Source"
    return " ".join(w[:1].upper() + w[1:] for w in words)
