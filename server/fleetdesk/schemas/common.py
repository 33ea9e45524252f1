"""Common Pydantic schemas."""

from typing import Optional

from pydantic import BaseModel, Field


class Problem(BaseModel):
    """RFC 9457 Problem Details response."""

    type: Optional[str] = Field(None, description="Problem type URI")
    title: str = Field(..., description="Short human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: Optional[str] = Field(None, description="Human-readable explanation")
    instance: Optional[str] = Field(None, description="URI reference for this occurrence")
    code: str = Field(..., description="Stable error kind, e.g. RESOURCE_CONFLICT")
    retryable: bool = Field(False, description="Whether the operation can be retried")


# Shared OpenAPI error documentation for the write endpoints
PROBLEM_RESPONSES = {
    400: {"model": Problem, "description": "Validation error"},
    401: {"model": Problem, "description": "Missing or invalid bearer token"},
    403: {"model": Problem, "description": "Not authorized or blacklisted customer"},
    404: {"model": Problem, "description": "Resource not found"},
    409: {"model": Problem, "description": "Resource conflict, illegal transition, or already resolved"},
    422: {"model": Problem, "description": "Checklist required or self dealing"},
    503: {"model": Problem, "description": "Storage error"},
}
