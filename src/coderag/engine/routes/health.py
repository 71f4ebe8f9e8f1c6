"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from coderag import __version__
from coderag.engine.models.responses import HealthResponse

router = APIRouter()


def _detect_capabilities() -> list[str]:
    """Detect which optional backends are importable."""
    caps = ["index", "query"]
    try:
        import openai  # noqa: F401
        caps.append("openai")
    except ImportError:
        pass
    try:
        import sentence_transformers  # noqa: F401
        caps.append("sentence-transformers")
    except ImportError:
        pass
    try:
        import watchdog  # noqa: F401
        caps.append("watch")
    except ImportError:
        pass
    return caps


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Return engine health status and available capabilities."""
    return HealthResponse(
        status="ok",
        version=__version__,
        capabilities=_detect_capabilities(),
    )
