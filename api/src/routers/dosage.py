"""
Dosage router.

Provides REST API endpoints for:
- Dose and volume calculation for a patient and a list of drugs
- Drug catalog search
- Detailed drug information

Every endpoint requires an API key. Calculation requests are validated
before they are accounted against the caller's rate limit, so a malformed
body never consumes quota.
"""

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Body, Depends, Query, Response, status

from api.src.config import Settings
from api.src.dependencies import (
    get_catalog,
    get_engine,
    get_rate_limiter,
    get_settings_from_app,
    get_validator,
)
from api.src.exceptions import DrugNotFoundError
from api.src.middleware.auth import ApiKeyPrincipal, authenticate
from api.src.middleware.rate_limit import RateLimitGuard, admit
from api.src.models.dosage import (
    CalculationResponse,
    DrugRecord,
    DrugSearchResponse,
    DrugSummary,
)
from api.src.models.errors import (
    ErrorResponse,
    RateLimitErrorResponse,
    ValidationErrorResponse,
)
from api.src.models.rate_limit import EndpointCategory
from api.src.repositories.drug_catalog import DrugCatalog
from api.src.services.calculation_engine import CalculationEngine
from api.src.services.rate_limiter import SlidingWindowRateLimiter
from api.src.services.request_validator import RequestValidator

logger = structlog.get_logger(__name__)

router = APIRouter(
    tags=["Dosage"],
    responses={
        401: {"model": ErrorResponse, "description": "Missing or invalid API key"},
        429: {"model": RateLimitErrorResponse, "description": "Rate limit exceeded"},
        503: {"model": ErrorResponse, "description": "Drug catalog unavailable"},
    },
)


# ============================================================================
# CALCULATION
# ============================================================================


@router.post(
    "/calculate",
    response_model=CalculationResponse,
    status_code=status.HTTP_200_OK,
    summary="Calculate Doses",
    description="""
    Calculate dose and volume for every requested drug.

    **Request Body:**
    - patient: `{weight_kg, species}` (or `weight` + `weight_unit`, `weight_lb`)
    - drugs: `[{drug_name, concentration?, route?, frequency?, custom_dose?}]`

    Unknown drugs are reported in `warnings` and `metadata.drugs_not_found`;
    the remaining lines are still calculated.
    """,
    responses={
        400: {"model": ValidationErrorResponse, "description": "Validation failed"},
    },
)
def calculate(
    response: Response,
    payload: Any = Body(None),
    principal: ApiKeyPrincipal = Depends(authenticate),
    settings: Settings = Depends(get_settings_from_app),
    validator: RequestValidator = Depends(get_validator),
    limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter),
    engine: CalculationEngine = Depends(get_engine),
) -> CalculationResponse:
    """
    Calculate doses.

    Raises:
        ValidationFailedError: Body malformed or out of bounds (400)
        RateLimitExceededError: Caller over any calculate window (429)
        CatalogUnavailableError: No catalog snapshot loaded (503)
    """
    patient, drugs = validator.validate_or_raise(payload)

    admit(limiter, settings, principal, EndpointCategory.CALCULATE, response)

    logger.info(
        "calculation_requested",
        key_id=principal.key_id,
        species=patient.species.value,
        weight_kg=patient.weight_kg,
        drugs=len(drugs),
    )

    return engine.calculate(patient, drugs)


# ============================================================================
# CATALOG LOOKUP
# ============================================================================


@router.get(
    "/drugs",
    response_model=DrugSearchResponse,
    summary="Search Drugs",
    description="Search the drug catalog by name (fuzzy) and category (exact).",
)
def list_drugs(
    search: Optional[str] = Query(None, max_length=100, description="Name or alias to search for"),
    category: Optional[str] = Query(None, max_length=50, description="Drug category filter"),
    principal: ApiKeyPrincipal = Depends(RateLimitGuard(EndpointCategory.LOOKUP)),
    catalog: DrugCatalog = Depends(get_catalog),
) -> DrugSearchResponse:
    records = catalog.search(search, category)
    logger.debug(
        "drug_search",
        key_id=principal.key_id,
        search=search,
        category=category,
        results=len(records),
    )
    return DrugSearchResponse(
        drugs=[DrugSummary.from_record(record) for record in records],
        count=len(records),
        categories=catalog.categories(),
    )


@router.get(
    "/drug-info/{drug_name}",
    response_model=DrugRecord,
    summary="Drug Information",
    description="Full catalog record for one drug; names and aliases match fuzzily.",
    responses={
        404: {"model": ErrorResponse, "description": "Drug not found"},
    },
)
def drug_info(
    drug_name: str,
    principal: ApiKeyPrincipal = Depends(RateLimitGuard(EndpointCategory.LOOKUP)),
    catalog: DrugCatalog = Depends(get_catalog),
) -> DrugRecord:
    """
    Get one drug record.

    Raises:
        DrugNotFoundError: No record close enough to the name (404)
    """
    record = catalog.find(drug_name)
    if record is None:
        logger.info("drug_info_not_found", key_id=principal.key_id, drug_name=drug_name)
        raise DrugNotFoundError(drug_name)
    return record
