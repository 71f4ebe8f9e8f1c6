"""FastAPI application factory for the coderag engine."""

from __future__ import annotations

import os

from fastapi import FastAPI

from coderag import __version__
from coderag.config import RagSettings
from coderag.engine.routes import health, rag
from coderag.rag.embeddings import EmbeddingProvider


def create_app(
    settings: RagSettings | None = None,
    embedding_provider: EmbeddingProvider | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Service mode is controlled via environment variables:
        CODERAG_SERVICE_MODE=1 enables CORS and auth middleware
        CODERAG_SERVICE_API_KEY is the key clients must send (auth skipped if unset)
        CODERAG_CORS_ORIGINS is a comma-separated list of origins (default: *)

    ``settings`` and ``embedding_provider`` replace the per-workspace
    settings and the provider built from them.
    """
    app = FastAPI(
        title="coderag engine",
        version=__version__,
        description="Incremental codebase indexing and semantic search",
    )
    app.state.settings = settings
    app.state.embedding_provider = embedding_provider

    service_mode = os.environ.get("CODERAG_SERVICE_MODE") == "1"
    if service_mode:
        from starlette.middleware.cors import CORSMiddleware

        from coderag.engine.middleware.auth import APIKeyMiddleware

        cors_env = os.environ.get("CODERAG_CORS_ORIGINS", "*")
        origins = [o.strip() for o in cors_env.split(",")]
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        app.add_middleware(APIKeyMiddleware)

    app.include_router(health.router)
    app.include_router(rag.router)

    return app
