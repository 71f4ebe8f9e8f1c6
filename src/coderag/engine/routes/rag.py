"""Codebase indexing and search endpoints."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import aclosing
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from coderag.config import RagSettings, load_settings
from coderag.engine.models.requests import RagIndexRequest, RagQueryRequest, RagUpdateRequest
from coderag.engine.models.responses import (
    RagMetadataResponse,
    RagQueryResponse,
    RagSearchResult,
    RagUpdateResponse,
)
from coderag.rag.embeddings import EmbeddingProvider
from coderag.rag.errors import RagError
from coderag.rag.indexer import get_rag_metadata, initialize_rag, update_rag
from coderag.rag.search import query_rag

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rag")

_locks: dict[str, asyncio.Lock] = {}


def workspace_lock(workspace_root: Path) -> asyncio.Lock:
    """One lock per workspace; index runs and updates never overlap."""
    key = str(workspace_root)
    lock = _locks.get(key)
    if lock is None:
        lock = _locks[key] = asyncio.Lock()
    return lock


def _settings(request: Request, root: Path) -> RagSettings:
    override = getattr(request.app.state, "settings", None)
    return override or load_settings(root)


def _provider(request: Request) -> EmbeddingProvider | None:
    return getattr(request.app.state, "embedding_provider", None)


@router.post("/index")
async def index_endpoint(req: RagIndexRequest, request: Request) -> StreamingResponse:
    """Index a workspace, streaming progress as server-sent events."""
    root = Path(req.workspace_root).resolve()
    settings = _settings(request, root)
    provider = _provider(request)

    async def event_generator():
        if not root.is_dir():
            yield _sse_event("error", {"message": f"Workspace not found: {root}"})
            yield _sse_event("done", {"success": False})
            return

        errors: list[str] = []
        lock = workspace_lock(root)
        async with lock:
            try:
                # closed inside the lock, so a disconnect cannot flush after release
                async with aclosing(initialize_rag(
                    root,
                    credential=req.api_key,
                    on_error=lambda e: errors.append(str(e)),
                    settings=settings,
                    provider=provider,
                )) as updates:
                    async for update in updates:
                        while errors:
                            yield _sse_event("error", {"message": errors.pop(0)})
                        yield _sse_event("progress", {"progress": update.progress, "total": update.total})
                while errors:
                    yield _sse_event("error", {"message": errors.pop(0)})
            except Exception as e:
                logger.exception("Indexing failed for %s", root)
                yield _sse_event("error", {"message": f"Indexing failed: {e}"})
                yield _sse_event("done", {"success": False})
                return
        yield _sse_event("done", {"success": True})

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/update", response_model=RagUpdateResponse)
async def update_endpoint(req: RagUpdateRequest, request: Request) -> RagUpdateResponse:
    """Apply a single file change to the index."""
    root = Path(req.workspace_root).resolve()
    if not root.is_dir():
        return RagUpdateResponse(
            success=False, relative_path=req.relative_path, event=req.event,
            error=f"Workspace not found: {root}",
        )
    settings = _settings(request, root)

    async with workspace_lock(root):
        try:
            await update_rag(
                req.relative_path,
                req.event,
                None,
                root,
                req.api_key,
                settings=settings,
                provider=_provider(request),
            )
        except (RagError, OSError) as e:
            logger.warning("Update of %s failed: %s", req.relative_path, e)
            return RagUpdateResponse(
                success=False, relative_path=req.relative_path, event=req.event, error=str(e),
            )

    return RagUpdateResponse(success=True, relative_path=req.relative_path, event=req.event)


@router.post("/query", response_model=RagQueryResponse)
async def query_endpoint(req: RagQueryRequest, request: Request) -> RagQueryResponse:
    """Semantic search over the workspace index."""
    root = Path(req.workspace_root).resolve()
    settings = _settings(request, root)

    try:
        results = await query_rag(
            req.query,
            root,
            req.api_key,
            limit=req.limit,
            settings=settings,
            provider=_provider(request),
        )
    except (RagError, ValueError) as e:
        return RagQueryResponse(success=False, query=req.query, error=str(e))

    return RagQueryResponse(
        success=True,
        query=req.query,
        results=[RagSearchResult(**r.to_dict()) for r in results],
    )


@router.get("/metadata", response_model=RagMetadataResponse)
async def metadata_endpoint(workspace_root: str, request: Request) -> RagMetadataResponse:
    """Index-wide metadata for a workspace."""
    root = Path(workspace_root).resolve()
    if not root.is_dir():
        return RagMetadataResponse(success=False, error=f"Workspace not found: {root}")

    try:
        metadata = get_rag_metadata(root, settings=_settings(request, root))
    except RagError as e:
        return RagMetadataResponse(success=False, error=str(e))

    return RagMetadataResponse(success=True, **metadata.to_dict())


def _sse_event(event_type: str, data: dict[str, Any]) -> str:
    """Format a single SSE event."""
    return f"event: {event_type}\ndata: {json.dumps(data)}\n\n"
