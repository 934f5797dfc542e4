"""
FastAPI dependency injection for the dosage service.

Provides injectable dependencies for:
- Application settings
- Drug catalog and calculation engine
- Request validator
- Rate limiter
- API key verifier

All components are built once by `create_app()` and stored on
`app.state`; these providers read them back so tests can inject their
own instances (fake clocks, fixed catalogs, static keys).
"""

from typing import TYPE_CHECKING

import structlog
from fastapi import Request

from api.src.config import Settings
from api.src.repositories.drug_catalog import DrugCatalog
from api.src.services.calculation_engine import CalculationEngine
from api.src.services.rate_limiter import SlidingWindowRateLimiter
from api.src.services.request_validator import RequestValidator

if TYPE_CHECKING:
    from api.src.middleware.auth import ApiKeyVerifier

logger = structlog.get_logger(__name__)


def _component(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        logger.error("app_component_missing", component=name)
        raise RuntimeError(f"{name} not initialized. Build the app with create_app().")
    return component


def get_settings_from_app(request: Request) -> Settings:
    """Settings the application was built with."""
    return _component(request, "settings")


def get_catalog(request: Request) -> DrugCatalog:
    """
    Get the drug catalog.

    Example:
        @router.get("/drugs")
        def list_drugs(catalog: DrugCatalog = Depends(get_catalog)):
            return catalog.categories()
    """
    return _component(request, "catalog")


def get_engine(request: Request) -> CalculationEngine:
    return _component(request, "engine")


def get_validator(request: Request) -> RequestValidator:
    return _component(request, "validator")


def get_rate_limiter(request: Request) -> SlidingWindowRateLimiter:
    return _component(request, "limiter")


def get_verifier(request: Request) -> "ApiKeyVerifier":
    return _component(request, "verifier")
