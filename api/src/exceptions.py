"""
Service exception taxonomy.

Request-level failures raise a DosageServiceError subclass which the
exception handlers in main.py render as `{"error": code, "message": ...}`.
Line-level failures inside a batch raise DoseResolutionError, which never
leaves the calculation engine.
"""

from typing import Any, Dict, List, Optional

from fastapi import status

from api.src.models.rate_limit import RateLimitDecision


class DosageServiceError(Exception):
    """Base class for errors that abort a whole request."""

    code: str = "internal_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}

    def headers(self) -> Optional[Dict[str, str]]:
        return None


class ValidationFailedError(DosageServiceError):
    """Client input malformed or out of bounds."""

    code = "validation_failed"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, messages: List[str]):
        super().__init__("; ".join(messages))
        self.messages = list(messages)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "messages": self.messages}


class InvalidApiKeyError(DosageServiceError):
    """Missing or unknown API key."""

    code = "invalid_api_key"
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Missing or invalid API key"):
        super().__init__(message)

    def headers(self) -> Optional[Dict[str, str]]:
        return {"WWW-Authenticate": "Bearer"}


class DrugNotFoundError(DosageServiceError):
    """Single-drug lookup found nothing."""

    code = "drug_not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, drug_name: str):
        super().__init__(f"Drug not found: {drug_name}")
        self.drug_name = drug_name


class RateLimitExceededError(DosageServiceError):
    """Admission rejected by the rate limiter."""

    code = "rate_limit_exceeded"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, decision: RateLimitDecision):
        super().__init__(
            f"Rate limit exceeded for {decision.category} requests "
            f"({decision.limit} per {int(decision.window_seconds)}s). "
            f"Retry after {decision.retry_after} seconds."
        )
        self.decision = decision

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "limit": self.decision.limit,
            "remaining": self.decision.remaining,
            "resetTime": self.decision.reset_epoch,
            "retryAfter": self.decision.retry_after,
            "window": self.decision.window,
        }

    def headers(self) -> Optional[Dict[str, str]]:
        return self.decision.headers()


class CatalogUnavailableError(DosageServiceError):
    """Drug catalog has no usable snapshot."""

    code = "service_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "Drug catalog is unavailable"):
        super().__init__(message)


class DoseResolutionError(Exception):
    """A single drug line could not be resolved into a dose and volume."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message
