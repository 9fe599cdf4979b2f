from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    RESEARCH_START = "research_start"
    CLASSIFY = "classify"
    PLAN = "plan"
    SEARCH_START = "search_start"
    SEARCH_PROGRESS = "search_progress"
    SEARCH_COMPLETE = "search_complete"
    SEARCH_FAILED = "search_failed"
    SYNTHESIZE_START = "synthesize_start"
    SYNTHESIZE_PROGRESS = "synthesize_progress"
    GAP_FOUND = "gap_found"
    ROUND2_START = "round2_start"
    RESEARCH_COMPLETE = "research_complete"
    ERROR = "error"


@dataclass
class SSEEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)

    def format(self) -> str:
        return f"event: {self.event.value}\ndata: {json.dumps(self.data)}\n\n"
