"""Metrics module using Prometheus."""

from .prometheus_metrics import (
    DosageMetrics,
    setup_metrics,
    get_metrics_handler,
)

__all__ = [
    "DosageMetrics",
    "setup_metrics",
    "get_metrics_handler",
]
