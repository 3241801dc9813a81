"""Pydantic models for API request/response."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ============ Request Models ============


class PutDocumentRequest(BaseModel):
    """Full-document replacement.

    ``data`` is optional at the model level so a missing document can be
    answered with the API's own 400 error instead of a validation error.
    """

    data: dict[str, Any] | None = Field(None, description="The complete user document")


# ============ Response Models ============


class DocumentResponse(BaseModel):
    """The stored document of the calling user."""

    model_config = ConfigDict(populate_by_name=True)

    document: dict[str, Any]
    updated_at: datetime = Field(..., alias="updatedAt")


class ErrorResponse(BaseModel):
    """Error body returned by every failing route."""

    error: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str
