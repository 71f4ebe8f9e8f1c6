"""Pydantic request models for the coderag engine API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class RagIndexRequest(BaseModel):
    """Request to bring a workspace's index up to date."""
    workspace_root: str = Field(..., description="Workspace root directory path")
    api_key: str | None = Field(default=None, description="Embedding provider credential")


class RagUpdateRequest(BaseModel):
    """Request to apply a single file change."""
    workspace_root: str = Field(..., description="Workspace root directory path")
    relative_path: str = Field(..., description="Workspace-relative path of the changed file")
    event: Literal["add", "update", "delete"] = Field(..., description="Kind of change")
    api_key: str | None = Field(default=None, description="Embedding provider credential")


class RagQueryRequest(BaseModel):
    """Request to search the codebase index."""
    workspace_root: str = Field(..., description="Workspace root directory path")
    query: str = Field(..., min_length=1, description="Natural language search query")
    limit: int = Field(default=10, ge=1, le=100, description="Maximum results to return")
    api_key: str | None = Field(default=None, description="Embedding provider credential")
