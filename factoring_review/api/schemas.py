"""Pydantic response schemas for API endpoints."""

from typing import Optional

from pydantic import BaseModel, Field


class ProblemDetail(BaseModel):
    """RFC 7807 Problem Details for HTTP APIs.

    See: https://www.rfc-editor.org/rfc/rfc7807
    """

    type: str = Field(..., description="URI reference identifying the problem type")
    title: str = Field(..., description="Short, human-readable summary of the problem")
    status: int = Field(..., description="HTTP status code for this problem")
    detail: Optional[str] = Field(
        None, description="Human-readable explanation specific to this occurrence"
    )
    instance: Optional[str] = Field(
        None,
        description="URI reference identifying this specific occurrence (e.g., request path)",
    )

    # Extension members (allowed by RFC 7807)
    code: str = Field(..., description="Application-specific error code")
    category: str = Field(
        ..., description="Error category (client_error, server_error, etc.)"
    )
    retryable: bool = Field(
        default=False, description="Whether the request can be retried"
    )
    trace_id: Optional[str] = Field(
        None, description="Distributed tracing ID for correlation across services"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "type": "/errors/RECORD_STORE_TIMEOUT",
                "title": "RECORD_STORE timeout",
                "status": 504,
                "instance": "/v1/cases/1024/evaluate",
                "code": "RECORD_STORE_TIMEOUT",
                "category": "external_service",
                "retryable": True,
                "trace_id": "a1b2c3d4-e5f6-7890-abcd-ef1234567890",
            }
        }
    }


class HealthResponse(BaseModel):
    """Service health status response."""

    status: str = Field(..., description="Overall service status (healthy/unhealthy)")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    evaluator: str = Field(..., description="Case evaluator status (ready/unavailable)")

    model_config = {
        "json_schema_extra": {
            "example": {
                "status": "healthy",
                "service": "factoring-review",
                "version": "1.0.0",
                "evaluator": "ready",
            }
        }
    }
