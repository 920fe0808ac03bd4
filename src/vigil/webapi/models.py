"""Request and response models for the monitoring API."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator

from ..models.alert import SYMBOL_PATTERN
from ..utils.clock import utc_now


class BaseResponse(BaseModel):
    """Base response model for all API responses."""

    success: bool = Field(..., description="Whether the request was successful")
    timestamp: datetime = Field(default_factory=utc_now, description="Response timestamp")
    request_id: Optional[str] = Field(
        None, description="Unique request identifier for tracking"
    )

    @field_serializer("timestamp")
    def serialize_timestamp(self, dt: datetime) -> str:
        """Serialize datetime to ISO format."""
        return dt.isoformat()


class ErrorResponse(BaseResponse):
    """Error response model."""

    success: bool = Field(False, description="Always false for error responses")
    error: Dict[str, Any] = Field(..., description="Error details")


class ActivityRequest(BaseModel):
    """A user is looking at an instrument."""

    user_id: str = Field(..., min_length=1, max_length=128)
    symbol: str = Field(..., description="Trading pair, e.g. BTCUSDT")

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v):
        symbol = v.strip().upper()
        if not SYMBOL_PATTERN.match(symbol):
            raise ValueError(f"Invalid trading pair symbol: {v!r}")
        return symbol


class ActivityResponse(BaseResponse):
    """Result of recording user activity."""

    success: bool = True
    symbol: str
    queued: bool = Field(..., description="Whether the cadence recheck was queued")


class MonitorStatusResponse(BaseResponse):
    """Monitoring engine status."""

    success: bool = True
    data: Dict[str, Any]


class HealthResponse(BaseResponse):
    """Health check response."""

    success: bool = True
    status: str = Field(..., description="healthy, degraded or unhealthy")
    services: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    uptime_seconds: float = 0.0
    version: Optional[str] = None
