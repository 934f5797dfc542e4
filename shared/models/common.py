"""Common Pydantic models shared across services."""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field


class HealthStatus(str, Enum):
    """Health status enum."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


class CatalogStatus(BaseModel):
    """State of the drug catalog snapshot."""

    loaded: bool = Field(..., description="Whether a snapshot is available")
    version: Optional[str] = Field(None, description="Snapshot version")
    drugs: int = Field(0, description="Number of records in the snapshot")
    loaded_at: Optional[datetime] = Field(None, description="When the snapshot was loaded")


class ServiceInfo(BaseModel):
    """Service information model."""

    service_name: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    status: HealthStatus = Field(..., description="Service health status")
    uptime_seconds: float = Field(..., description="Service uptime in seconds")
    dependencies: Dict[str, HealthStatus] = Field(
        default_factory=dict, description="Dependency health status"
    )

    model_config = {"use_enum_values": True}
