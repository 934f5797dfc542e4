"""Prometheus metrics definitions and helpers.

Provides the metric families of the dosage calculation service.
"""

from functools import lru_cache
from typing import Callable

from prometheus_client import (
    Counter,
    Gauge,
    generate_latest,
    REGISTRY,
    CollectorRegistry,
)


class DosageMetrics:
    """Dosage calculation service metrics."""

    def __init__(self, registry: CollectorRegistry = REGISTRY) -> None:
        """Initialize dosage metrics.

        Args:
            registry: Prometheus registry to use
        """
        self.registry = registry

        # Batches calculated
        self.calculations = Counter(
            "dosage_calculations_total",
            "Total number of calculation batches",
            ["outcome"],
            registry=registry,
        )

        # Drug lines by outcome (ok, not_found, calculation_error)
        self.drug_lines = Counter(
            "dosage_drug_lines_total",
            "Total number of drug lines processed",
            ["outcome"],
            registry=registry,
        )

        # Range classification
        self.dose_range_status = Counter(
            "dosage_range_status_total",
            "Computed doses by range classification",
            ["status"],
            registry=registry,
        )

        # Admission decisions
        self.rate_limit_decisions = Counter(
            "rate_limit_decisions_total",
            "Rate limiter admission decisions",
            ["category", "outcome", "window"],
            registry=registry,
        )

        # Catalog
        self.catalog_drugs = Gauge(
            "drug_catalog_records",
            "Number of drug records in the current catalog snapshot",
            registry=registry,
        )

        self.catalog_refresh_failures = Counter(
            "drug_catalog_refresh_failures_total",
            "Number of failed catalog loads",
            ["source"],
            registry=registry,
        )


@lru_cache()
def setup_metrics() -> DosageMetrics:
    """Setup and return the process-wide metric instance.

    Returns:
        DosageMetrics registered on the default registry
    """
    return DosageMetrics()


def get_metrics_handler(registry: CollectorRegistry = REGISTRY) -> Callable[[], bytes]:
    """Get metrics handler for HTTP endpoint.

    Returns:
        Function that generates Prometheus metrics output
    """

    def metrics_handler() -> bytes:
        return generate_latest(registry)

    return metrics_handler
