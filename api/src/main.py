"""
FastAPI application entry point for the Veterinary Dosage API.

This module provides the application factory with:
- Dose calculation and drug catalog endpoints
- API key authentication and per-key rate limiting
- Health and readiness endpoints
- Request logging with correlation IDs
- Prometheus metrics
- OpenTelemetry distributed tracing
- CORS and security headers
- Catalog loading, background refresh and graceful shutdown
"""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager, suppress
from typing import AsyncGenerator, List, Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from limits.storage import storage_from_string
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from api.src import __version__
from api.src.config import Settings, get_settings
from api.src.exceptions import DosageServiceError
from api.src.middleware.auth import ApiKeyVerifier, StaticApiKeyVerifier
from api.src.repositories.catalog_source import CatalogSource, refresh_periodically
from api.src.repositories.drug_catalog import DrugCatalog
from api.src.routers import dosage
from api.src.services.calculation_engine import CalculationEngine
from api.src.services.rate_limiter import SlidingWindowRateLimiter
from api.src.services.request_validator import RequestValidator
from shared.logging import bind_context, clear_context, configure_logging
from shared.metrics import DosageMetrics, get_metrics_handler, setup_metrics
from shared.models import CatalogStatus, HealthStatus, ServiceInfo
from shared.tracing import configure_tracing

# Initialize logger
logger = structlog.get_logger(__name__)

# ============================================================================
# Prometheus Metrics
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"]
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "HTTP requests currently in progress",
    ["method"]
)

# ============================================================================
# Middleware
# ============================================================================


def route_template(request: Request) -> str:
    """Path template of the matched route, used as the metrics label."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request logging, metrics and correlation IDs."""

    async def dispatch(self, request: Request, call_next):
        """Process request and log details."""
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())

        method = request.method
        path = request.url.path
        client_ip = request.client.host if request.client else "unknown"

        clear_context()
        bind_context(correlation_id=correlation_id)

        http_requests_in_progress.labels(method=method).inc()
        start_time = time.perf_counter()

        logger.info(
            "request_started",
            method=method,
            path=path,
            client_ip=client_ip,
        )

        try:
            response = await call_next(request)

            duration = time.perf_counter() - start_time
            endpoint = route_template(request)

            http_requests_total.labels(
                method=method,
                endpoint=endpoint,
                status=response.status_code
            ).inc()

            http_request_duration_seconds.labels(
                method=method,
                endpoint=endpoint
            ).observe(duration)

            logger.info(
                "request_completed",
                method=method,
                path=path,
                status_code=response.status_code,
                duration=f"{duration:.3f}s",
            )

            response.headers["X-Correlation-ID"] = correlation_id
            return response

        except Exception as e:
            duration = time.perf_counter() - start_time
            logger.error(
                "request_failed",
                method=method,
                path=path,
                error=str(e),
                duration=f"{duration:.3f}s",
                exc_info=True
            )
            raise

        finally:
            http_requests_in_progress.labels(method=method).dec()
            clear_context()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to responses."""

    def __init__(self, app, settings: Settings):
        super().__init__(app)
        self.settings = settings

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"

        if self.settings.security_require_https:
            response.headers["Strict-Transport-Security"] = (
                f"max-age={self.settings.security_hsts_max_age}; includeSubDomains"
            )

        return response


# ============================================================================
# Background Tasks
# ============================================================================


async def evict_idle_periodically(limiter: SlidingWindowRateLimiter, interval_seconds: float) -> None:
    """Evict idle rate limit state forever; cancel the task to stop."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            limiter.evict_idle()
        except Exception as e:
            logger.error("rate_limit_eviction_failed", error=str(e), exc_info=True)


async def load_catalog(app: FastAPI) -> None:
    """
    Initial catalog load.

    A failed remote load falls back to the seed file; if that fails too the
    catalog stays unavailable and catalog-dependent endpoints answer 503.
    """
    state = app.state
    if state.catalog.is_loaded:
        logger.info("catalog_preloaded", drugs=len(state.catalog.snapshot()))
        return

    if await state.catalog_source.refresh(state.catalog):
        return

    if state.catalog_source.source_url:
        fallback = CatalogSource(
            seed_path=state.settings.catalog_seed_path,
            metrics=state.metrics,
        )
        logger.warning("catalog_falling_back_to_seed", path=str(fallback.seed_path))
        if await fallback.refresh(state.catalog):
            return

    logger.error("catalog_unavailable_at_startup")


# ============================================================================
# Lifespan Management
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager for startup and shutdown events.

    Handles:
    - Initial catalog load
    - Background catalog refresh and rate limit state eviction
    - Graceful shutdown of background tasks and tracing
    """
    settings: Settings = app.state.settings
    tasks: List[asyncio.Task] = []

    logger.info(
        "application_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment
    )

    try:
        await load_catalog(app)

        if settings.catalog_refresh_interval > 0:
            tasks.append(asyncio.create_task(
                refresh_periodically(
                    app.state.catalog,
                    app.state.catalog_source,
                    settings.catalog_refresh_interval,
                )
            ))

        tasks.append(asyncio.create_task(
            evict_idle_periodically(app.state.limiter, settings.rate_limit_idle_eviction_seconds)
        ))

        logger.info(
            "application_started",
            app_name=settings.app_name,
            catalog_loaded=app.state.catalog.is_loaded,
            background_tasks=len(tasks),
        )

        yield

    except Exception as e:
        logger.error("application_startup_failed", error=str(e), exc_info=True)
        raise

    finally:
        logger.info("application_shutting_down")

        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task

        if app.state.tracer_provider is not None:
            logger.info("shutting_down_tracing")
            app.state.tracer_provider.shutdown()

        logger.info("application_shutdown_complete")


# ============================================================================
# Exception Handlers
# ============================================================================


def _format_validation_error(error: dict) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
    message = error.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error as `{"error": code, ...}`."""

    @app.exception_handler(DosageServiceError)
    async def dosage_service_exception_handler(request: Request, exc: DosageServiceError):
        """Handle request-level service errors."""
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "request_rejected",
            path=request.url.path,
            error=exc.code,
            status_code=exc.status_code,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=exc.headers(),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request parsing errors."""
        messages = [_format_validation_error(error) for error in exc.errors()]
        logger.warning(
            "validation_error",
            path=request.url.path,
            errors=messages
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "validation_failed", "messages": messages}
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions."""
        logger.warning(
            "http_exception",
            path=request.url.path,
            status_code=exc.status_code,
            detail=exc.detail
        )
        codes = {
            status.HTTP_404_NOT_FOUND: "not_found",
            status.HTTP_405_METHOD_NOT_ALLOWED: "method_not_allowed",
        }
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": codes.get(exc.status_code, "http_error"), "message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.error(
            "unexpected_exception",
            path=request.url.path,
            error=str(exc),
            exc_info=True
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "internal_error", "message": "Internal server error"}
        )


# ============================================================================
# Health, Readiness and Metrics Endpoints
# ============================================================================


def register_operational_routes(app: FastAPI, settings: Settings) -> None:
    started_at = time.monotonic()

    @app.get("/health", tags=["Health"], response_model=ServiceInfo)
    async def health_check(request: Request) -> ServiceInfo:
        """
        Health check endpoint.

        Always answers 200 for container health checks; the service is
        degraded while no catalog snapshot is loaded.
        """
        settings: Settings = request.app.state.settings
        loaded = request.app.state.catalog.is_loaded
        return ServiceInfo(
            service_name=settings.app_name,
            version=settings.app_version,
            status=HealthStatus.HEALTHY if loaded else HealthStatus.DEGRADED,
            dependencies={"catalog": HealthStatus.HEALTHY if loaded else HealthStatus.UNHEALTHY},
            uptime_seconds=round(time.monotonic() - started_at, 3),
        )

    @app.get("/ready", tags=["Health"], response_class=JSONResponse)
    async def readiness_check(request: Request) -> JSONResponse:
        """
        Readiness check endpoint.

        Ready once a catalog snapshot is loaded.
        """
        settings: Settings = request.app.state.settings
        catalog: DrugCatalog = request.app.state.catalog

        if catalog.is_loaded:
            snapshot = catalog.snapshot()
            catalog_status = CatalogStatus(
                loaded=True,
                version=snapshot.version,
                drugs=len(snapshot),
                loaded_at=snapshot.loaded_at,
            )
        else:
            catalog_status = CatalogStatus(loaded=False)

        return JSONResponse(
            status_code=status.HTTP_200_OK if catalog_status.loaded else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "ready" if catalog_status.loaded else "not_ready",
                "service": settings.app_name,
                "version": settings.app_version,
                "checks": {"catalog": catalog_status.model_dump(mode="json")},
            }
        )

    if not settings.metrics_enabled:
        return

    @app.get("/metrics", tags=["Monitoring"], response_class=PlainTextResponse)
    async def metrics(request: Request) -> Response:
        """
        Prometheus metrics endpoint.

        Exposes application metrics in Prometheus format for scraping.
        """
        catalog: DrugCatalog = request.app.state.catalog
        if catalog.is_loaded:
            request.app.state.metrics.catalog_drugs.set(len(catalog.snapshot()))

        return Response(
            content=request.app.state.metrics_handler(),
            media_type=CONTENT_TYPE_LATEST
        )


# ============================================================================
# Application Factory
# ============================================================================


def create_app(
    settings: Optional[Settings] = None,
    catalog: Optional[DrugCatalog] = None,
    verifier: Optional[ApiKeyVerifier] = None,
    limiter: Optional[SlidingWindowRateLimiter] = None,
    catalog_source: Optional[CatalogSource] = None,
    metrics: Optional[DosageMetrics] = None,
) -> FastAPI:
    """
    Build the application.

    Every collaborator can be injected; anything omitted is built from
    settings. An injected catalog that is already loaded is not reloaded
    at startup.

    Args:
        settings: Application settings (environment if None)
        catalog: Drug catalog
        verifier: API key verifier
        limiter: Rate limiter
        catalog_source: Source of catalog snapshots
        metrics: Domain metrics

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.log_format == "json",
        service_name=settings.app_name,
        environment=settings.environment,
    )

    metrics = metrics or setup_metrics()
    catalog = catalog if catalog is not None else DrugCatalog(fuzzy_threshold=settings.catalog_fuzzy_threshold)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "Veterinary drug dosage calculation API. Computes per-drug doses and "
            "administration volumes for dogs and cats from a curated drug catalog."
        ),
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.state.settings = settings
    app.state.metrics = metrics
    app.state.metrics_handler = get_metrics_handler(metrics.registry)
    app.state.catalog = catalog
    app.state.catalog_source = catalog_source or CatalogSource(
        seed_path=settings.catalog_seed_path,
        source_url=settings.catalog_source_url,
        timeout_seconds=settings.catalog_request_timeout,
        retry_attempts=settings.catalog_retry_attempts,
        metrics=metrics,
    )
    app.state.verifier = verifier or StaticApiKeyVerifier.from_settings(settings)
    app.state.limiter = limiter or SlidingWindowRateLimiter(
        settings.rate_limit_policies(),
        storage=storage_from_string(settings.rate_limit_storage_uri),
        metrics=metrics,
    )
    app.state.validator = RequestValidator(
        weight_min_kg=settings.weight_min_kg,
        weight_max_kg=settings.weight_max_kg,
        max_drugs=settings.max_drugs_per_request,
    )
    app.state.engine = CalculationEngine(catalog, metrics=metrics)
    app.state.tracer_provider = None

    # ========================================================================
    # Middleware Configuration
    # ========================================================================

    if settings.cors_enabled:
        logger.info("configuring_cors", origins=settings.cors_origins)
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=False,
            allow_methods=settings.cors_allow_methods,
            allow_headers=settings.cors_allow_headers,
            expose_headers=[
                "X-RateLimit-Limit",
                "X-RateLimit-Remaining",
                "X-RateLimit-Reset",
                "X-RateLimit-Window",
                "X-RateLimit-Burst-Limit",
                "X-RateLimit-Burst-Remaining",
                "Retry-After",
                "X-Correlation-ID",
            ],
            max_age=settings.cors_max_age,
        )

    app.add_middleware(RequestLoggingMiddleware)

    if settings.security_headers_enabled:
        app.add_middleware(SecurityHeadersMiddleware, settings=settings)

    if settings.tracing_enabled:
        logger.info("initializing_tracing", otlp_endpoint=settings.tracing_otlp_endpoint)
        app.state.tracer_provider = configure_tracing(
            service_name=settings.app_name,
            service_version=settings.app_version,
            otlp_endpoint=settings.tracing_otlp_endpoint,
            sampling_rate=settings.tracing_sample_rate,
        )
        FastAPIInstrumentor.instrument_app(app, tracer_provider=app.state.tracer_provider)

    register_exception_handlers(app)
    register_operational_routes(app, settings)

    # ========================================================================
    # API Router Registration
    # ========================================================================

    app.include_router(dosage.router, prefix=settings.api_prefix)

    return app


app = create_app()

# ============================================================================
# Application Entry Point
# ============================================================================

if __name__ == "__main__":
    settings = get_settings()

    logger.info(
        "starting_uvicorn_server",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        version=__version__,
    )

    uvicorn.run(
        "api.src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )
