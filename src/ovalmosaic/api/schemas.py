"""Pydantic response schemas for the mosaic API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    landmarker_loaded: bool
    active_jobs: int
    queue_depth: int


class StatusResponse(BaseModel):
    """State of the most recent mosaic run."""

    state: str = Field(description="Run state: 'idle', 'running', 'done', or 'failed'")
    current: int = Field(description="1-based index of the image being processed")
    total: int
    message: str = Field(description="Human-readable status line")
    archive_ready: bool
    worker_job: str | None = Field(default=None, description="Label of the job on the mosaic worker")
    queued_jobs: int = 0


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
