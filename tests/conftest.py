"""
Shared pytest fixtures for the dosage API test suite.

Provides:
- A small, fixed drug catalog independent of the bundled seed
- A controllable clock for rate limiter tests
- Isolated Prometheus metrics per test
"""

import time

import pytest
from prometheus_client import CollectorRegistry

from api.src.models.dosage import DrugRecord
from api.src.repositories.drug_catalog import CatalogSnapshot, DrugCatalog
from shared.metrics import DosageMetrics


# ============================================================================
# TEST DATA
# ============================================================================


CEPHALEXIN = {
    "name": "Cephalexin",
    "category": "antibiotic",
    "aliases": ["cefalexin"],
    "default_dose_per_kg": 22,
    "dose_unit": "mg/kg",
    "dose_range": {"min": 15, "max": 30, "unit": "mg/kg"},
    "species": ["dog", "cat"],
    "default_route": "PO",
    "default_frequency": "q12h",
    "concentration_options": [
        {"id": "ceph-250", "label": "250 mg/ml suspension", "value": 250, "unit": "mg/ml", "default": True},
        {"id": "ceph-100", "label": "100 mg/ml suspension", "value": 100, "unit": "mg/ml"},
    ],
}

MELOXICAM = {
    "name": "Meloxicam",
    "category": "nsaid",
    "aliases": ["metacam"],
    "default_dose_per_kg": 0.1,
    "dose_unit": "mg/kg",
    "dose_range": {"min": 0.05, "max": 0.2, "unit": "mg/kg"},
    "feline_dose": {
        "dose_per_kg": 0.05,
        "unit": "mg/kg",
        "dose_range": {"min": 0.025, "max": 0.1, "unit": "mg/kg"},
    },
    "default_route": "PO",
    "default_frequency": "q24h",
    "concentration_options": [
        {"id": "melox-1.5", "label": "1.5 mg/ml oral suspension", "value": 1.5, "unit": "mg/ml", "default": True},
        {"id": "melox-0.5", "label": "0.5 mg/ml oral suspension", "value": 0.5, "unit": "mg/ml"},
    ],
}

CARPROFEN = {
    "name": "Carprofen",
    "category": "nsaid",
    "default_dose_per_kg": 4.4,
    "dose_range": {"min": 2.2, "max": 4.4, "unit": "mg/kg"},
    "species": ["dog"],
    "concentration_options": [
        {"id": "carp-50", "label": "50 mg/ml injectable", "value": 50, "unit": "mg/ml", "default": True},
    ],
}

BUPRENORPHINE = {
    "name": "Buprenorphine",
    "category": "opioid",
    "default_dose_per_kg": 20,
    "dose_unit": "mcg/kg",
    "dose_range": {"min": 10, "max": 30, "unit": "mcg/kg"},
    "default_route": "IV",
    "default_frequency": "q8h",
    "concentration_options": [
        {"id": "bup-0.3", "label": "0.3 mg/ml injectable", "value": 0.3, "unit": "mg/ml", "default": True},
    ],
}

GABAPENTIN_NO_CONCENTRATION = {
    "name": "Gabapentin",
    "category": "analgesic",
    "default_dose_per_kg": 10,
    "dose_range": {"min": 5, "max": 20, "unit": "mg/kg"},
    "concentration_options": [],
}

SAMPLE_RECORDS = [CEPHALEXIN, MELOXICAM, CARPROFEN, BUPRENORPHINE, GABAPENTIN_NO_CONCENTRATION]


# ============================================================================
# FIXTURES
# ============================================================================


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def records():
    """Validated sample drug records."""
    return [DrugRecord.model_validate(raw) for raw in SAMPLE_RECORDS]


@pytest.fixture
def record_by_name(records):
    return {record.name: record for record in records}


@pytest.fixture
def catalog(records):
    """Catalog loaded with the sample records."""
    return DrugCatalog(CatalogSnapshot(records, version="test-1"))


@pytest.fixture
def clock(monkeypatch):
    """
    Fake clock installed as `time.time`.

    The rate limiter storage timestamps its window entries with
    `time.time()`, so both sides read the same controllable time.
    """
    fake = FakeClock()
    monkeypatch.setattr(time, "time", fake)
    return fake


@pytest.fixture
def metrics():
    """Metrics on a private registry so tests never collide."""
    return DosageMetrics(registry=CollectorRegistry())
