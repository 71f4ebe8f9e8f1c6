"""Semantic search over the codebase index."""

from __future__ import annotations

import logging
from pathlib import Path

from coderag.config import RagSettings, load_settings
from coderag.rag.embeddings import EmbeddingProvider, create_embedding_provider
from coderag.rag.errors import EmbeddingProviderError
from coderag.rag.schema import SearchResult
from coderag.rag.vector_store import VectorStore
from coderag.utils.paths import get_vector_db_path

logger = logging.getLogger(__name__)


async def query_rag(
    text: str,
    workspace_root: Path | str,
    credential: str | None = None,
    limit: int = 10,
    *,
    settings: RagSettings | None = None,
    provider: EmbeddingProvider | None = None,
) -> list[SearchResult]:
    """Find the chunks nearest to a natural language query.

    Args:
        text: Query text
        workspace_root: Indexed workspace
        credential: API key for the embedding provider
        limit: Maximum results to return

    Returns:
        Results sorted ascending by distance; ties broken by path then
        chunk index. An unindexed workspace returns an empty list.
    """
    if limit < 1:
        raise ValueError(f"limit must be positive, got {limit}")

    root = Path(workspace_root).resolve()
    settings = settings or load_settings(root)

    # Read-only: a drifted or missing table is left for the next index run.
    store = VectorStore(get_vector_db_path(root, settings.data_dir), settings.index_schema())
    store.open()
    if not store.has_table:
        logger.info("No index found for %s", root)
        return []

    provider = provider or create_embedding_provider(settings, credential)
    vectors = await provider.embed([text])
    if not vectors:
        raise EmbeddingProviderError("Failed to generate embedding for query")

    results = store.search(vectors[0], limit=limit)
    logger.debug("Query returned %d results", len(results))
    return results
