"""
Rate limiting models.

Window policies per endpoint category and the admission decision returned
by the sliding window rate limiter.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple


class EndpointCategory(str, Enum):
    """Endpoint groups accounted separately per API key."""
    CALCULATE = "calculate"
    LOOKUP = "lookup"


@dataclass(frozen=True)
class WindowPolicy:
    """One rolling window: at most `limit` requests per `seconds`."""
    name: str
    limit: int
    seconds: float

    def __post_init__(self):
        if self.limit <= 0:
            raise ValueError(f"window {self.name} limit must be positive, got {self.limit}")
        if self.seconds <= 0:
            raise ValueError(f"window {self.name} length must be positive, got {self.seconds}")


@dataclass(frozen=True)
class RateLimitPolicy:
    """The three concurrent windows applied to one endpoint category."""
    burst: WindowPolicy
    per_minute: WindowPolicy
    per_hour: WindowPolicy

    @classmethod
    def build(
        cls,
        per_minute: int,
        per_hour: int,
        burst: int,
        burst_seconds: float = 10.0,
    ) -> "RateLimitPolicy":
        return cls(
            burst=WindowPolicy("burst", burst, burst_seconds),
            per_minute=WindowPolicy("minute", per_minute, 60.0),
            per_hour=WindowPolicy("hour", per_hour, 3600.0),
        )

    @property
    def windows(self) -> Tuple[WindowPolicy, ...]:
        return (self.burst, self.per_minute, self.per_hour)

    @property
    def longest_seconds(self) -> float:
        return max(window.seconds for window in self.windows)


@dataclass(frozen=True)
class WindowStatus:
    """Usage of one window at decision time."""
    policy: WindowPolicy
    remaining: int
    reset_time: float


@dataclass(frozen=True)
class RateLimitDecision:
    """
    Outcome of an admission check.

    `limit`, `remaining`, `reset_time` and `window_seconds` describe the
    binding window: the exhausted one on rejection, the tightest remaining
    one on admission. Burst fields always describe the burst window.
    """
    allowed: bool
    category: str
    window: str
    limit: int
    remaining: int
    reset_time: float
    window_seconds: float
    burst_limit: int
    burst_remaining: int
    retry_after: Optional[int] = None
    windows: Dict[str, int] = field(default_factory=dict)

    @property
    def reset_epoch(self) -> int:
        """Reset time rounded up to whole epoch seconds."""
        whole = int(self.reset_time)
        return whole if whole == self.reset_time else whole + 1

    def headers(self) -> Dict[str, str]:
        """X-RateLimit-* response headers for this decision."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_epoch),
            "X-RateLimit-Window": str(int(self.window_seconds)),
            "X-RateLimit-Burst-Limit": str(self.burst_limit),
            "X-RateLimit-Burst-Remaining": str(self.burst_remaining),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers
