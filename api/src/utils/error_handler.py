"""
Error handling utilities with exponential backoff retry logic.

Provides a retry decorator, error classification for transient vs
permanent failures, and a circuit breaker for calls to the remote drug
reference service.
"""

import asyncio
import functools
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Tuple, Type

import aiohttp
import structlog

logger = structlog.get_logger(__name__)


class ErrorCategory(Enum):
    """Error category classification"""
    RETRYABLE = "retryable"
    NON_RETRYABLE = "non_retryable"
    RATE_LIMITED = "rate_limited"


class CircuitOpenError(Exception):
    """Raised instead of calling a service whose circuit is open."""


@dataclass
class RetryConfig:
    """Configuration for retry behavior"""
    max_attempts: int = 3
    initial_delay: float = 0.5  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.2  # +/- 20%


@dataclass
class RetryMetrics:
    """Metrics for retry operations"""
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    retry_count: int = 0
    last_error: Optional[str] = None
    last_error_timestamp: Optional[datetime] = None


RETRYABLE_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    aiohttp.ClientConnectionError,
    aiohttp.ServerTimeoutError,
)

NON_RETRYABLE_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    ValueError,
    TypeError,
    KeyError,
    CircuitOpenError,
)


def classify_error(exception: BaseException) -> ErrorCategory:
    """
    Classify an exception as retryable or non-retryable.

    Args:
        exception: The exception to classify

    Returns:
        ErrorCategory indicating retry behavior
    """
    if isinstance(exception, aiohttp.ClientResponseError):
        if exception.status == 429:
            return ErrorCategory.RATE_LIMITED
        if exception.status in {408, 500, 502, 503, 504}:
            return ErrorCategory.RETRYABLE
        return ErrorCategory.NON_RETRYABLE

    if isinstance(exception, NON_RETRYABLE_EXCEPTIONS):
        return ErrorCategory.NON_RETRYABLE

    if isinstance(exception, RETRYABLE_EXCEPTIONS):
        return ErrorCategory.RETRYABLE

    # Default to non-retryable for safety
    return ErrorCategory.NON_RETRYABLE


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate delay for retry attempt with exponential backoff and jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    delay = min(config.initial_delay * (config.exponential_base ** attempt), config.max_delay)

    if config.jitter:
        jitter = random.uniform(-config.jitter_range, config.jitter_range)
        delay = delay * (1 + jitter)

    return max(0.0, delay)


def retry_with_backoff(
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    metrics: Optional[RetryMetrics] = None,
    sleep: Callable = asyncio.sleep,
):
    """
    Decorator for retrying coroutines with exponential backoff.

    Retryable and rate limited errors are retried until max_attempts is
    reached; anything else is raised immediately.

    Args:
        config: Retry configuration (uses defaults if None)
        on_retry: Optional callback called on each retry
        metrics: Optional metrics object to track retry stats
        sleep: Awaitable sleep function

    Example:
        @retry_with_backoff(RetryConfig(max_attempts=5))
        async def fetch_catalog(session):
            ...
    """
    if config is None:
        config = RetryConfig()

    if metrics is None:
        metrics = RetryMetrics()

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(config.max_attempts):
                try:
                    metrics.total_attempts += 1
                    result = await func(*args, **kwargs)
                    metrics.successful_attempts += 1
                    return result

                except Exception as e:
                    error_category = classify_error(e)
                    metrics.last_error = str(e)
                    metrics.last_error_timestamp = datetime.now(timezone.utc)

                    if error_category == ErrorCategory.NON_RETRYABLE:
                        logger.error(
                            "non_retryable_error",
                            function=func.__name__,
                            attempt=attempt + 1,
                            error_type=type(e).__name__,
                            error=str(e),
                        )
                        metrics.failed_attempts += 1
                        raise

                    if attempt == config.max_attempts - 1:
                        logger.error(
                            "max_retries_exhausted",
                            function=func.__name__,
                            max_attempts=config.max_attempts,
                            error_type=type(e).__name__,
                            error=str(e),
                        )
                        metrics.failed_attempts += 1
                        raise

                    delay = calculate_delay(attempt, config)
                    metrics.retry_count += 1

                    logger.warning(
                        "retrying_operation",
                        function=func.__name__,
                        attempt=attempt + 1,
                        max_attempts=config.max_attempts,
                        delay_seconds=round(delay, 2),
                        error_type=type(e).__name__,
                        error_category=error_category.value,
                    )

                    if on_retry:
                        on_retry(attempt, e, delay)

                    await sleep(delay)

        return wrapper

    return decorator


class CircuitBreaker:
    """
    Circuit breaker to prevent hammering a failing service.

    States:
    - closed: Normal operation, calls go through
    - open: Too many failures, reject calls immediately
    - half-open: After the timeout, allow a call to test recovery
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout_seconds: float = 60.0,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.failure_threshold = failure_threshold
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self.failure_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.state = "closed"

    def check_state(self) -> str:
        """Check and update circuit breaker state"""
        if self.state == "open" and self.last_failure_time:
            elapsed = (self.clock() - self.last_failure_time).total_seconds()
            if elapsed > self.timeout_seconds:
                self.state = "half-open"
                logger.info("circuit_breaker_half_open")
        return self.state

    def record_success(self) -> None:
        if self.state == "half-open":
            logger.info("circuit_breaker_closed")
        self.state = "closed"
        self.failure_count = 0

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self.clock()

        if self.state == "half-open" or self.failure_count >= self.failure_threshold:
            if self.state != "open":
                logger.warning(
                    "circuit_breaker_opened",
                    failure_count=self.failure_count,
                    threshold=self.failure_threshold,
                )
            self.state = "open"

    def is_call_permitted(self) -> bool:
        return self.check_state() != "open"


def with_circuit_breaker(circuit_breaker: CircuitBreaker):
    """
    Decorator to apply the circuit breaker pattern to a coroutine.

    Raises:
        CircuitOpenError: If the circuit is open
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            if not circuit_breaker.is_call_permitted():
                raise CircuitOpenError(f"circuit open, rejecting call to {func.__name__}")

            try:
                result = await func(*args, **kwargs)
            except Exception:
                circuit_breaker.record_failure()
                raise
            circuit_breaker.record_success()
            return result

        return wrapper

    return decorator
