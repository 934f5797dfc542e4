"""Shared Pydantic models for the dosage service."""

from .common import (
    CatalogStatus,
    HealthStatus,
    ServiceInfo,
)

__all__ = [
    "CatalogStatus",
    "HealthStatus",
    "ServiceInfo",
]
