"""JSON prompt catalog for the planner, search and synthesis calls."""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any


PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"
_catalog: dict[str, Any] | None = None
_catalog_mtime_ns: int | None = None


def _load_catalog() -> dict[str, Any]:
    global _catalog, _catalog_mtime_ns
    mtime_ns = PROMPTS_PATH.stat().st_mtime_ns
    if _catalog is not None and _catalog_mtime_ns == mtime_ns:
        return _catalog

    payload = json.loads(PROMPTS_PATH.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Prompt catalog must be a JSON object.")
    _catalog = payload
    _catalog_mtime_ns = mtime_ns
    return payload


def get_prompt(key: str) -> str:
    """Return the raw template stored under a dotted key such as ``planner.system``."""
    node: Any = _load_catalog()
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(f"Prompt key not found: {key}")
        node = node[part]
    if not isinstance(node, str):
        raise TypeError(f"Prompt key must map to a string: {key}")
    return node


def render_prompt(key: str, **values: Any) -> str:
    template = Template(get_prompt(key))
    try:
        return template.substitute(**values)
    except KeyError as exc:
        missing = str(exc.args[0])
        raise KeyError(f"Missing template value '{missing}' for prompt '{key}'") from exc


def render_block(key: str, **values: Any) -> str:
    """Render an optional prompt section; empty when every value is blank."""
    if not any(str(v).strip() for v in values.values() if v is not None):
        return ""
    return render_prompt(key, **{k: "" if v is None else v for k, v in values.items()})


def clear_prompt_cache() -> None:
    global _catalog, _catalog_mtime_ns
    _catalog = None
    _catalog_mtime_ns = None
