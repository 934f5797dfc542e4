"""FastAPI middleware components.

This package contains request admission for the dosage API: API key
authentication and per-category rate limiting.
"""

from api.src.middleware.auth import (
    ApiKeyPrincipal,
    ApiKeyVerifier,
    StaticApiKeyVerifier,
    authenticate,
    extract_api_key,
    key_id_for,
)
from api.src.middleware.rate_limit import (
    RateLimitGuard,
    admit,
)

__all__ = [
    # Auth
    "ApiKeyPrincipal",
    "ApiKeyVerifier",
    "StaticApiKeyVerifier",
    "authenticate",
    "extract_api_key",
    "key_id_for",
    # Rate limiting
    "RateLimitGuard",
    "admit",
]
