"""
Sliding window rate limiter.

Admission control per (API key, endpoint category) across three concurrent
windows: burst, per-minute and per-hour. Each window is a `limits` moving
window item; the counts live in a `limits` storage backend (in-process
memory by default, any `limits` storage URI otherwise).
"""

import math
import threading
import time
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import structlog
from limits import RateLimitItem, RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage
from limits.strategies import MovingWindowRateLimiter

from api.src.models.rate_limit import (
    RateLimitDecision,
    RateLimitPolicy,
    WindowPolicy,
    WindowStatus,
)
from shared.metrics import DosageMetrics

logger = structlog.get_logger(__name__)

StateKey = Tuple[str, str]
WindowItems = List[Tuple[WindowPolicy, RateLimitItem]]


def window_item(window: WindowPolicy) -> RateLimitItem:
    """`limits` item allowing `window.limit` hits per `window.seconds`."""
    return RateLimitItemPerSecond(window.limit, int(window.seconds), namespace=f"DOSAGE-{window.name.upper()}")


class SlidingWindowRateLimiter:
    """
    Per-key, per-category admission control.

    A call is rejected when any window is full; the rejection reports the
    exhausted window that frees up last and nothing is recorded. An admitted
    call is hit in every window and reports the window with the fewest
    remaining requests.
    """

    def __init__(
        self,
        policies: Mapping[str, RateLimitPolicy],
        storage: Optional[Storage] = None,
        clock: Callable[[], float] = time.time,
        metrics: Optional[DosageMetrics] = None,
    ):
        """
        Initialize rate limiter.

        Args:
            policies: Window policy per endpoint category
            storage: `limits` storage backend (in-memory if None)
            clock: Source of the current time in epoch seconds, used for
                retry and idle computations
            metrics: Optional metrics sink
        """
        if not policies:
            raise ValueError("at least one rate limit policy is required")
        self.policies = dict(policies)
        self.storage = storage or MemoryStorage()
        self.strategy = MovingWindowRateLimiter(self.storage)
        self.clock = clock
        self.metrics = metrics
        self._items: Dict[str, WindowItems] = {
            name: [(window, window_item(window)) for window in policy.windows]
            for name, policy in self.policies.items()
        }
        self._last_seen: Dict[StateKey, float] = {}
        # Serializes the test-then-hit sequence across the three windows
        self._lock = threading.Lock()

        logger.info(
            "rate_limiter_initialized",
            storage=type(self.storage).__name__,
            categories={
                name: {w.name: f"{w.limit}/{int(w.seconds)}s" for w in policy.windows}
                for name, policy in self.policies.items()
            },
        )

    def policy_for(self, category: str) -> RateLimitPolicy:
        try:
            return self.policies[category]
        except KeyError:
            raise ValueError(f"no rate limit policy for category: {category}") from None

    def _window_items(self, category: str) -> WindowItems:
        self.policy_for(category)
        return self._items[category]

    def _statuses(self, items: WindowItems, key: str, category: str) -> List[WindowStatus]:
        statuses = []
        for window, item in items:
            reset_time, remaining = self.strategy.get_window_stats(item, key, category)
            statuses.append(WindowStatus(policy=window, remaining=max(0, remaining), reset_time=reset_time))
        return statuses

    def check(self, key: str, category: str) -> RateLimitDecision:
        """
        Admit or reject one call and record it when admitted.

        Args:
            key: Authenticated API key identifier
            category: Endpoint category the call belongs to

        Returns:
            RateLimitDecision describing the binding window
        """
        items = self._window_items(category)

        with self._lock:
            now = self.clock()
            if all(self.strategy.test(item, key, category) for _, item in items):
                for _, item in items:
                    self.strategy.hit(item, key, category)
                self._last_seen[(key, category)] = now
                decision = self._admission(category, self._statuses(items, key, category))
            else:
                statuses = self._statuses(items, key, category)
                exhausted = [s for s in statuses if s.remaining == 0] or statuses
                decision = self._rejection(category, exhausted, statuses, now)

        if self.metrics:
            self.metrics.rate_limit_decisions.labels(
                category=category,
                outcome="admitted" if decision.allowed else "rejected",
                window=decision.window,
            ).inc()

        if not decision.allowed:
            logger.warning(
                "rate_limit_exceeded",
                key_id=key,
                category=category,
                window=decision.window,
                limit=decision.limit,
                retry_after=decision.retry_after,
                remaining_by_window=decision.windows,
            )

        return decision

    def peek(self, key: str, category: str) -> RateLimitDecision:
        """Current usage without recording a call."""
        items = self._window_items(category)
        with self._lock:
            now = self.clock()
            statuses = self._statuses(items, key, category)
        exhausted = [s for s in statuses if s.remaining == 0]
        if exhausted:
            return self._rejection(category, exhausted, statuses, now)
        return self._admission(category, statuses)

    def evict_idle(self) -> int:
        """
        Clear the windows of keys idle for longer than their longest window.

        Returns:
            Number of evicted (key, category) entries
        """
        evicted = 0
        with self._lock:
            now = self.clock()
            for (key, category), last_seen in list(self._last_seen.items()):
                if now - last_seen > self.policies[category].longest_seconds:
                    for _, item in self._items[category]:
                        self.strategy.clear(item, key, category)
                    del self._last_seen[(key, category)]
                    evicted += 1
        if evicted:
            logger.info("rate_limit_state_evicted", evicted=evicted, remaining=len(self._last_seen))
        return evicted

    def tracked_keys(self) -> int:
        return len(self._last_seen)

    def _rejection(
        self,
        category: str,
        exhausted: List[WindowStatus],
        statuses: List[WindowStatus],
        now: float,
    ) -> RateLimitDecision:
        # The exhausted window that frees a slot last is the one that binds
        binding = max(exhausted, key=lambda s: (s.reset_time, s.policy.seconds))
        return self._decision(
            category,
            binding,
            statuses,
            allowed=False,
            retry_after=max(1, math.ceil(binding.reset_time - now)),
        )

    def _admission(self, category: str, statuses: List[WindowStatus]) -> RateLimitDecision:
        # Fewest remaining wins; ties go to the longer window
        binding = min(statuses, key=lambda s: (s.remaining, -s.policy.seconds))
        return self._decision(category, binding, statuses, allowed=True)

    @staticmethod
    def _decision(
        category: str,
        binding: WindowStatus,
        statuses: List[WindowStatus],
        allowed: bool,
        retry_after: Optional[int] = None,
    ) -> RateLimitDecision:
        burst = next(s for s in statuses if s.policy.name == "burst")
        return RateLimitDecision(
            allowed=allowed,
            category=category,
            window=binding.policy.name,
            limit=binding.policy.limit,
            remaining=binding.remaining if allowed else 0,
            reset_time=binding.reset_time,
            window_seconds=binding.policy.seconds,
            burst_limit=burst.policy.limit,
            burst_remaining=burst.remaining,
            retry_after=retry_after,
            windows={s.policy.name: s.remaining for s in statuses},
        )
