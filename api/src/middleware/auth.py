"""
API key authentication for FastAPI.

Provides:
- API key extraction from the X-API-Key header or an Authorization bearer
- Constant-time verification against SHA-256 digests of configured keys
- A stable, non-secret key id used for rate limiting and logging
- The `authenticate` dependency raising InvalidApiKeyError (401)

Raw API keys are never logged or stored after verifier construction.
"""

import hashlib
import hmac
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Protocol

import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from api.src.dependencies import get_settings_from_app, get_verifier
from api.src.config import Settings
from api.src.exceptions import InvalidApiKeyError

logger = structlog.get_logger(__name__)

# HTTP Bearer token scheme for dependency injection
security = HTTPBearer(auto_error=False)

KEY_ID_LENGTH = 12


def _digest(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def key_id_for(api_key: str) -> str:
    """Stable identifier derived from a key; safe to log."""
    return _digest(api_key)[:KEY_ID_LENGTH]


@dataclass(frozen=True)
class ApiKeyPrincipal:
    """Caller identified by a verified API key."""
    key_id: str
    client_name: str


class ApiKeyVerifier(Protocol):
    """Resolves a presented API key to a principal, or None if unknown."""

    def verify(self, api_key: str) -> Optional[ApiKeyPrincipal]:
        ...


class StaticApiKeyVerifier:
    """
    Verifier over a fixed set of keys.

    Keys are kept only as SHA-256 digests; every stored digest is compared
    in constant time so timing does not reveal which prefix matched.
    """

    def __init__(self, api_keys: Mapping[str, str]):
        """
        Initialize verifier.

        Args:
            api_keys: Accepted API keys mapped to client names
        """
        self._clients: Dict[str, str] = {
            _digest(key): client_name for key, client_name in api_keys.items()
        }
        if not self._clients:
            logger.warning("api_key_verifier_empty")

    @classmethod
    def from_settings(cls, settings: Settings) -> "StaticApiKeyVerifier":
        return cls(settings.api_keys)

    def verify(self, api_key: str) -> Optional[ApiKeyPrincipal]:
        presented = _digest(api_key)
        matched: Optional[str] = None
        for digest, client_name in self._clients.items():
            if hmac.compare_digest(presented, digest):
                matched = client_name
        if matched is None:
            return None
        return ApiKeyPrincipal(key_id=presented[:KEY_ID_LENGTH], client_name=matched)

    def __len__(self) -> int:
        return len(self._clients)


def extract_api_key(
    request: Request,
    header_name: str,
    credentials: Optional[HTTPAuthorizationCredentials] = None,
) -> Optional[str]:
    """
    Extract the API key from the request.

    The dedicated header wins over an Authorization bearer.

    Args:
        request: HTTP request
        header_name: Name of the API key header
        credentials: Parsed Authorization header, if any

    Returns:
        API key or None if not present
    """
    api_key = request.headers.get(header_name)
    if api_key and api_key.strip():
        return api_key.strip()

    if credentials and credentials.scheme.lower() == "bearer":
        token = credentials.credentials.strip()
        return token or None

    return None


async def authenticate(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_settings_from_app),
    verifier: ApiKeyVerifier = Depends(get_verifier),
) -> ApiKeyPrincipal:
    """
    Authenticate the caller by API key.

    Args:
        request: HTTP request
        credentials: Optional bearer credentials
        settings: Application settings
        verifier: API key verifier

    Returns:
        Verified principal (also stored on request.state.principal)

    Raises:
        InvalidApiKeyError: If the key is missing or unknown
    """
    api_key = extract_api_key(request, settings.api_key_header, credentials)

    if not api_key:
        logger.warning(
            "auth_missing_api_key",
            path=request.url.path,
            method=request.method,
            client=request.client.host if request.client else None,
        )
        raise InvalidApiKeyError("Missing API key")

    principal = verifier.verify(api_key)

    if principal is None:
        logger.warning(
            "auth_invalid_api_key",
            path=request.url.path,
            method=request.method,
            key_id=key_id_for(api_key),
            client=request.client.host if request.client else None,
        )
        raise InvalidApiKeyError("Invalid API key")

    request.state.principal = principal

    logger.debug(
        "request_authenticated",
        path=request.url.path,
        key_id=principal.key_id,
        client_name=principal.client_name,
    )

    return principal
