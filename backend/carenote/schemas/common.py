"""Schemas shared by every route module."""

from datetime import datetime
from typing import Annotated, Any, Dict, Optional

from pydantic import AfterValidator, BaseModel, Field

from carenote.database import as_utc

# Client timestamps without an offset are read as UTC
UTCDatetime = Annotated[datetime, AfterValidator(as_utc)]


class ErrorResponse(BaseModel):
    """
    What:  Standardized error response format.
    Who:   Returned by every exception handler in main.py.

    Example:
        {
            "error": "payment_required",
            "message": "Your subscription does not grant access. Please renew to continue.",
            "details": {"reason": "expired"},
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[Dict[str, Any]] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request ID for support correlation")


class MessageResponse(BaseModel):
    message: str


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PageMeta":
        return cls(page=page, limit=limit, total=total, total_pages=(total + limit - 1) // limit)


class HealthResponse(BaseModel):
    """
    Status levels:
        healthy:   database and Corti reachable
        degraded:  database up, Corti unavailable or circuit open
        unhealthy: database down
    """
    status: str = Field(description="Overall status: healthy, degraded, unhealthy")
    version: str = Field(description="API version")
    database: str = Field(description="Database status: connected, disconnected")
    corti: str = Field(description="Corti status: available, unavailable, circuit_open")
    uptime_seconds: float = Field(description="Seconds since service started")
