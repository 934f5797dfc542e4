"""
Rate limit admission for FastAPI routes.

Provides:
- `admit()` applying the sliding window limiter to an authenticated caller
- `RateLimitGuard`, a dependency class guarding a whole endpoint category
- X-RateLimit-* headers on every admitted response

Rejections raise RateLimitExceededError, which main.py renders as a 429
carrying Retry-After and the same headers.
"""

from typing import Optional

import structlog
from fastapi import Depends, Response

from api.src.config import Settings
from api.src.dependencies import get_rate_limiter, get_settings_from_app
from api.src.exceptions import RateLimitExceededError
from api.src.middleware.auth import ApiKeyPrincipal, authenticate
from api.src.models.rate_limit import EndpointCategory, RateLimitDecision
from api.src.services.rate_limiter import SlidingWindowRateLimiter

logger = structlog.get_logger(__name__)


def admit(
    limiter: SlidingWindowRateLimiter,
    settings: Settings,
    principal: ApiKeyPrincipal,
    category: EndpointCategory,
    response: Response,
) -> Optional[RateLimitDecision]:
    """
    Admit one call for the caller or raise.

    Args:
        limiter: Rate limiter
        settings: Application settings
        principal: Authenticated caller
        category: Endpoint category the call is accounted to
        response: Response the rate limit headers are written to

    Returns:
        The admission decision, or None when rate limiting is disabled

    Raises:
        RateLimitExceededError: If any window for the caller is full
    """
    if not settings.rate_limit_enabled:
        return None

    decision = limiter.check(principal.key_id, category.value)

    if not decision.allowed:
        raise RateLimitExceededError(decision)

    response.headers.update(decision.headers())
    return decision


class RateLimitGuard:
    """
    Dependency admitting calls of one endpoint category.

    Example:
        @router.get("/drugs", dependencies=[Depends(RateLimitGuard(EndpointCategory.LOOKUP))])
        def list_drugs():
            ...
    """

    def __init__(self, category: EndpointCategory):
        self.category = category

    def __call__(
        self,
        response: Response,
        principal: ApiKeyPrincipal = Depends(authenticate),
        settings: Settings = Depends(get_settings_from_app),
        limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter),
    ) -> ApiKeyPrincipal:
        admit(limiter, settings, principal, self.category, response)
        return principal
