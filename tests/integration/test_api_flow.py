"""
Integration tests for the dosage API.

Runs the full application (middleware, authentication, rate limiting,
exception handlers and routers) through the FastAPI test client with an
in-memory catalog and a controllable rate limiter clock.
"""

import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from api.src.config import Settings
from api.src.main import create_app
from api.src.repositories.drug_catalog import DrugCatalog
from api.src.services.rate_limiter import SlidingWindowRateLimiter


API_KEY = "clinic-test-key"
AUTH = {"X-API-Key": API_KEY}

CEPHALEXIN_REQUEST = {
    "patient": {"weight_kg": 25, "species": "dog"},
    "drugs": [{"drug_name": "Cephalexin"}],
}


@pytest.fixture
def settings():
    return Settings(
        api_keys={API_KEY: "Test Clinic"},
        environment="development",
        log_level="WARNING",
        tracing_enabled=False,
    )


def build_client(settings, catalog, clock, metrics):
    limiter = SlidingWindowRateLimiter(settings.rate_limit_policies(), clock=clock, metrics=metrics)
    app = create_app(settings=settings, catalog=catalog, limiter=limiter, metrics=metrics)
    return TestClient(app)


@pytest.fixture
def client(settings, catalog, clock, metrics):
    return build_client(settings, catalog, clock, metrics)


@pytest.fixture
def unavailable_client(settings, clock, metrics):
    return build_client(settings, DrugCatalog(), clock, metrics)


# ============================================================================
# AUTHENTICATION
# ============================================================================


@pytest.mark.integration
class TestAuthentication:
    """Test API key enforcement"""

    def test_missing_key(self, client):
        response = client.post("/api/calculate", json=CEPHALEXIN_REQUEST)

        assert response.status_code == 401
        assert response.json() == {"error": "invalid_api_key", "message": "Missing API key"}
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_wrong_key(self, client):
        response = client.get("/api/drugs", headers={"X-API-Key": "not-a-key"})

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_api_key"

    def test_bearer_token(self, client):
        response = client.get("/api/drugs", headers={"Authorization": f"Bearer {API_KEY}"})

        assert response.status_code == 200

    def test_operational_routes_are_open(self, client):
        assert client.get("/health").status_code == 200
        assert client.get("/ready").status_code == 200


# ============================================================================
# CALCULATION
# ============================================================================


@pytest.mark.integration
class TestCalculate:
    """Test POST /api/calculate"""

    def test_cephalexin_for_dog(self, client):
        response = client.post("/api/calculate", json=CEPHALEXIN_REQUEST, headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        line = body["calculations"][0]
        assert line["drug_name"] == "Cephalexin"
        assert line["total_dose"] == 550
        assert line["dose_unit"] == "mg"
        assert line["volume"] == 2.2
        assert line["volume_unit"] == "ml"
        assert line["dose_range_status"] == "within_range"
        assert body["metadata"]["drugs_processed"] == 1
        assert body["warnings"] == []

    def test_rate_limit_headers_on_success(self, client):
        response = client.post("/api/calculate", json=CEPHALEXIN_REQUEST, headers=AUTH)

        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "9"
        assert response.headers["X-RateLimit-Window"] == "10"
        assert response.headers["X-RateLimit-Burst-Limit"] == "10"
        assert response.headers["X-RateLimit-Burst-Remaining"] == "9"
        assert int(response.headers["X-RateLimit-Reset"]) > 0
        assert "Retry-After" not in response.headers

    def test_weight_in_pounds_and_cat(self, client):
        response = client.post(
            "/api/calculate",
            json={
                "patient": {"weight": 11, "weight_unit": "lb", "species": "feline"},
                "drugs": [{"drug_name": "metacam"}],
            },
            headers=AUTH,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["patient"]["species"] == "cat"
        assert body["patient"]["weight_kg"] == pytest.approx(4.99, abs=0.01)
        assert body["calculations"][0]["dose_source"] == "feline"

    def test_unknown_drugs_reported(self, client):
        response = client.post(
            "/api/calculate",
            json={
                "patient": {"weight_kg": 10, "species": "dog"},
                "drugs": [{"drug_name": "Cephalexin"}, {"drug_name": "Unobtainium"}],
            },
            headers=AUTH,
        )

        assert response.status_code == 200
        body = response.json()
        assert len(body["calculations"]) == 1
        assert body["metadata"]["drugs_not_found"] == ["Unobtainium"]
        assert "Unobtainium" in body["warnings"][0]

    def test_contraindicated_species(self, client):
        response = client.post(
            "/api/calculate",
            json={"patient": {"weight_kg": 4, "species": "cat"}, "drugs": [{"drug_name": "Carprofen"}]},
            headers=AUTH,
        )

        assert response.status_code == 200
        assert response.json()["calculations"][0]["dose_range_status"] == "contraindicated"


# ============================================================================
# VALIDATION
# ============================================================================


@pytest.mark.integration
class TestValidation:
    """Test request validation errors"""

    def test_all_violations_reported(self, client):
        response = client.post(
            "/api/calculate",
            json={"patient": {"weight_kg": -5}, "drugs": []},
            headers=AUTH,
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_failed"
        assert len(body["messages"]) == 3

    def test_empty_body(self, client):
        response = client.post("/api/calculate", headers=AUTH)

        assert response.status_code == 400
        assert response.json()["error"] == "validation_failed"

    def test_malformed_json(self, client):
        response = client.post(
            "/api/calculate",
            content=b"{not json",
            headers={**AUTH, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "validation_failed"

    def test_invalid_requests_consume_no_quota(self, client):
        for _ in range(15):
            assert client.post("/api/calculate", json={"drugs": []}, headers=AUTH).status_code == 400

        response = client.post("/api/calculate", json=CEPHALEXIN_REQUEST, headers=AUTH)

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Remaining"] == "9"

    def test_search_too_long(self, client):
        response = client.get("/api/drugs", params={"search": "x" * 101}, headers=AUTH)

        assert response.status_code == 400
        assert response.json()["error"] == "validation_failed"


# ============================================================================
# RATE LIMITING
# ============================================================================


@pytest.mark.integration
class TestRateLimiting:
    """Test 429 responses"""

    def test_burst_exhausted(self, client, clock):
        for _ in range(10):
            assert client.post("/api/calculate", json=CEPHALEXIN_REQUEST, headers=AUTH).status_code == 200

        response = client.post("/api/calculate", json=CEPHALEXIN_REQUEST, headers=AUTH)

        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "rate_limit_exceeded"
        assert body["limit"] == 10
        assert body["remaining"] == 0
        assert body["retryAfter"] == 10
        assert body["resetTime"] == int(clock.now) + 10
        assert body["window"] == "burst"
        assert response.headers["Retry-After"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_recovers_after_burst_window(self, client, clock):
        for _ in range(10):
            client.post("/api/calculate", json=CEPHALEXIN_REQUEST, headers=AUTH)
        assert client.post("/api/calculate", json=CEPHALEXIN_REQUEST, headers=AUTH).status_code == 429

        clock.advance(11)

        response = client.post("/api/calculate", json=CEPHALEXIN_REQUEST, headers=AUTH)
        assert response.status_code == 200

    def test_lookup_quota_separate_from_calculate(self, client):
        for _ in range(10):
            client.post("/api/calculate", json=CEPHALEXIN_REQUEST, headers=AUTH)

        response = client.get("/api/drugs", headers=AUTH)

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "20"
        assert response.headers["X-RateLimit-Remaining"] == "19"

    def test_disabled(self, settings, catalog, clock, metrics):
        settings = settings.model_copy(update={"rate_limit_enabled": False})
        client = build_client(settings, catalog, clock, metrics)

        for _ in range(12):
            response = client.post("/api/calculate", json=CEPHALEXIN_REQUEST, headers=AUTH)
            assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers


# ============================================================================
# CATALOG LOOKUP
# ============================================================================


@pytest.mark.integration
class TestDrugLookup:
    """Test GET /api/drugs and GET /api/drug-info/{name}"""

    def test_list_all(self, client):
        response = client.get("/api/drugs", headers=AUTH)

        body = response.json()
        assert body["count"] == 5
        assert body["categories"] == ["analgesic", "antibiotic", "nsaid", "opioid"]
        assert {"name", "category", "species", "default_route", "default_frequency"} == set(body["drugs"][0])

    def test_search(self, client):
        body = client.get("/api/drugs", params={"search": "ceph"}, headers=AUTH).json()

        assert [drug["name"] for drug in body["drugs"]] == ["Cephalexin"]

    def test_category(self, client):
        body = client.get("/api/drugs", params={"category": "nsaid"}, headers=AUTH).json()

        assert [drug["name"] for drug in body["drugs"]] == ["Carprofen", "Meloxicam"]

    def test_drug_info_fuzzy(self, client):
        response = client.get("/api/drug-info/Cephalexn", headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["name"] == "Cephalexin"
        assert len(body["concentration_options"]) == 2

    def test_drug_info_not_found(self, client):
        response = client.get("/api/drug-info/Paracetamol", headers=AUTH)

        assert response.status_code == 404
        assert response.json() == {"error": "drug_not_found", "message": "Drug not found: Paracetamol"}


# ============================================================================
# CATALOG UNAVAILABLE
# ============================================================================


@pytest.mark.integration
class TestCatalogUnavailable:
    """Test 503 before any catalog snapshot is loaded"""

    def test_calculate(self, unavailable_client):
        response = unavailable_client.post("/api/calculate", json=CEPHALEXIN_REQUEST, headers=AUTH)

        assert response.status_code == 503
        assert response.json()["error"] == "service_unavailable"

    def test_drugs(self, unavailable_client):
        assert unavailable_client.get("/api/drugs", headers=AUTH).status_code == 503

    def test_not_ready(self, unavailable_client):
        response = unavailable_client.get("/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"
        assert response.json()["checks"]["catalog"]["loaded"] is False

    def test_health_degraded(self, unavailable_client):
        response = unavailable_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["dependencies"] == {"catalog": "unhealthy"}


# ============================================================================
# OPERATIONAL ROUTES
# ============================================================================


@pytest.mark.integration
class TestOperational:
    """Test health, readiness, metrics and response headers"""

    def test_health(self, client, settings):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["service_name"] == settings.app_name
        assert body["dependencies"] == {"catalog": "healthy"}

    def test_ready(self, client):
        body = client.get("/ready").json()

        assert body["status"] == "ready"
        assert body["checks"]["catalog"]["version"] == "test-1"
        assert body["checks"]["catalog"]["drugs"] == 5

    def test_metrics(self, client):
        client.post("/api/calculate", json=CEPHALEXIN_REQUEST, headers=AUTH)

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "dosage_calculations_total" in response.text
        assert "rate_limit_decisions_total" in response.text
        assert "drug_catalog_records 5.0" in response.text

    def test_security_and_correlation_headers(self, client):
        response = client.get("/health", headers={"X-Correlation-ID": "abc-123"})

        assert response.headers["X-Correlation-ID"] == "abc-123"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"

    def test_unknown_route(self, client):
        response = client.get("/api/unknown", headers=AUTH)

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_request_metrics_use_route_template(self, client):
        labels = {"method": "GET", "endpoint": "/api/drug-info/{drug_name}", "status": "200"}
        before = REGISTRY.get_sample_value("http_requests_total", labels) or 0

        client.get("/api/drug-info/Cephalexn", headers=AUTH)

        assert REGISTRY.get_sample_value("http_requests_total", labels) == before + 1
        assert REGISTRY.get_sample_value(
            "http_requests_total",
            {"method": "GET", "endpoint": "/api/drug-info/Cephalexn", "status": "200"},
        ) is None

    def test_unmatched_route_metrics_label(self, client):
        client.get("/api/unknown/abc-123", headers=AUTH)

        assert REGISTRY.get_sample_value(
            "http_requests_total",
            {"method": "GET", "endpoint": "unmatched", "status": "404"},
        ) >= 1
        assert REGISTRY.get_sample_value(
            "http_requests_total",
            {"method": "GET", "endpoint": "/api/unknown/abc-123", "status": "404"},
        ) is None
