"""Per-session cost ceiling and wall-clock timeout guard."""
from __future__ import annotations

import time
from typing import Callable

from loguru import logger

from deep_research.errors import CostLimitExceeded, ResearchTimeout
from deep_research.models.research import ResearchSession
from deep_research.research_config import ResearchConfig

_EPSILON = 1e-9


class SessionBudget:
    """Tracks spent and reserved cost for one session.

    Every cost-incurring operation calls :meth:`reserve` (or :meth:`check`)
    first. Reservations cover in-flight search legs so parallel legs cannot
    jointly overshoot the ceiling; :meth:`charge` converts a reservation into
    accumulated cost on the session.
    """

    def __init__(
        self,
        session: ResearchSession,
        config: ResearchConfig,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session
        self.config = config
        self.clock = clock
        self.reserved = 0.0

    @property
    def elapsed_ms(self) -> int:
        return int((self.clock() - self.session.started_at) * 1000)

    @property
    def remaining(self) -> float:
        return self.config.max_total_cost - self.session.accumulated_cost - self.reserved

    def timed_out(self) -> bool:
        return self.elapsed_ms >= self.config.timeout_ms

    def over_budget(self) -> bool:
        return self.session.accumulated_cost >= self.config.max_total_cost

    def check(self, estimate: float = 0.0) -> None:
        """Raise if the operation would exceed the time or cost limit."""
        if self.timed_out():
            logger.warning(
                f"Session {self.session.id} timed out after {self.elapsed_ms}ms "
                f"(limit {self.config.timeout_ms}ms)"
            )
            raise ResearchTimeout(f"elapsed {self.elapsed_ms}ms >= {self.config.timeout_ms}ms")

        projected = self.session.accumulated_cost + self.reserved + max(estimate, 0.0)
        if projected > self.config.max_total_cost + _EPSILON:
            logger.warning(
                f"Session {self.session.id} cost guard tripped: projected ${projected:.4f} "
                f"> limit ${self.config.max_total_cost:.4f}"
            )
            raise CostLimitExceeded(
                f"projected ${projected:.4f} exceeds ${self.config.max_total_cost:.4f}"
            )

    def reserve(self, estimate: float) -> None:
        self.check(estimate)
        self.reserved += max(estimate, 0.0)

    def release(self, estimate: float) -> None:
        self.reserved = max(self.reserved - max(estimate, 0.0), 0.0)

    def charge(self, amount: float, *, reserved: float = 0.0) -> None:
        """Add ``amount`` to the session cost, dropping any matching reservation."""
        if reserved:
            self.release(reserved)
        if amount > 0:
            self.session.add_cost(amount)
