"""Pydantic request/response schemas for the photogate API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class FeedbackPayload(BaseModel):
    """User notification attached to a rejected or warning decision."""

    kind: str = Field(description="'rejected' or 'warning'")
    message: str


class ModerationResponse(BaseModel):
    """Outcome of moderating one uploaded image."""

    decision: str = Field(description="'accepted', 'rejected', or 'accepted_with_warning'")
    allowed: bool = Field(description="Whether the caller may use the image")
    reason: str | None = Field(default=None, description="Rejection reason, for rejected images")
    cause: str | None = Field(default=None, description="Warning cause, for images accepted without moderation")
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    category: str | None = Field(default=None, description="Highest-risk NSFW class, for rejected images")
    feedback: FeedbackPayload | None = None


class ModelStateResponse(BaseModel):
    """Loading state of the moderation model."""

    status: str = Field(description="'unloaded', 'loading', 'ready', or 'failed'")
    cause: str | None = Field(default=None, description="'unavailable', 'timeout', or 'unknown' when failed")
    error: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    moderation_enabled: bool
    model: ModelStateResponse
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available moderation model."""

    name: str
    input_size: int
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
