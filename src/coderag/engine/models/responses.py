"""Pydantic response models for the coderag engine API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "ok"
    version: str
    capabilities: list[str] = Field(default_factory=list)


class RagSearchResult(BaseModel):
    """A single nearest-neighbour hit."""
    relative_path: str
    absolute_path: str
    content: str
    start_line: int
    end_line: int
    chunk_index: int
    distance: float


class RagQueryResponse(BaseModel):
    """Response from a codebase query."""
    success: bool
    query: str
    results: list[RagSearchResult] = Field(default_factory=list)
    error: str | None = None


class RagUpdateResponse(BaseModel):
    """Response from a single-file update."""
    success: bool
    relative_path: str
    event: str
    error: str | None = None


class RagMetadataResponse(BaseModel):
    """Index-wide metadata."""
    success: bool
    rag_version: int | None = None
    schema_version: int | None = None
    initialized_at: datetime | None = None
    last_indexed_at: datetime | None = None
    indexed_files: int = 0
    error: str | None = None
