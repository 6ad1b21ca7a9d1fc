"""Pydantic response schemas for the SceneLens API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ModeResponse(BaseModel):
    """Current input mode and which controls are enabled."""

    mode: str | None = Field(description="'live', 'still', or null before the first switch")
    live_available: bool
    live_enabled: bool = Field(description="Whether the 'switch to live' control is enabled")
    still_enabled: bool = Field(description="Whether the 'pick still image' control is enabled")


class ResultResponse(BaseModel):
    """The text currently on display."""

    text: str
    mode: str | None = Field(description="Mode of the request that produced the text")
    sequence: int = Field(description="Increments on every update")


class PipelineStats(BaseModel):
    admitted: int
    dropped: int
    completed: int
    failed: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    model: str
    live_available: bool
    mode: str | None
    in_flight: list[str]
    pipeline: PipelineStats
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str
    input_size: int


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
