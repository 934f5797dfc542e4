"""Error response schemas shared by every endpoint."""

from typing import List, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Error response schema."""
    error: str = Field(..., min_length=1, description="Machine readable error code")
    message: str = Field(..., description="Human readable error message")

    model_config = {
        "json_schema_extra": {
            "example": {
                "error": "invalid_api_key",
                "message": "Missing or invalid API key"
            }
        }
    }


class ValidationErrorResponse(BaseModel):
    """Validation error response schema."""
    error: str = Field("validation_failed")
    messages: List[str] = Field(..., min_length=1, description="Every violation found")


class RateLimitErrorResponse(BaseModel):
    """Rate limit error response schema."""
    error: str = Field("rate_limit_exceeded")
    message: str
    limit: int
    remaining: int
    resetTime: int = Field(..., description="Epoch seconds when the binding window frees a slot")
    retryAfter: int = Field(..., description="Seconds to wait before retrying")
    window: Optional[str] = None
