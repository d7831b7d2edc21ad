"""
GroupUp Backend - Shared Schema Pieces
======================================

What:  The camelCase base model every API schema inherits from, plus the
       error and health response shapes.
Why:   The web client speaks camelCase (`expiresAt`, `canJoin`); Python code
       keeps snake_case attributes. The alias generator bridges the two, and
       `populate_by_name` lets services build models with snake_case kwargs.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ErrorResponse(BaseModel):
    """
    Error body returned by every exception handler.

    Example:
        {
            "error": "permission_denied",
            "message": "You must be within 100m of the group location to join",
            "details": {"radius": 100, "distance": 240},
            "request_id": "1f0c9a2b"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class SuccessResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None


class HealthResponse(CamelModel):
    """Returned by GET /health for container health checks."""
    status: str = Field(description="healthy, degraded or unhealthy")
    version: str
    database: str = Field(description="connected or disconnected")
    spatial_store: str = Field(description="ready, empty or unavailable")
    uptime_seconds: float
