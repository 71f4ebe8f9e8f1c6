"""Embedding providers.

Two backends ship with the engine:

- ``OpenAIEmbeddingProvider`` talks to any OpenAI-compatible ``/embeddings``
  endpoint. The default targets ``gemini-embedding-001`` through the local
  model proxy.
- ``SentenceTransformerEmbeddingProvider`` runs a local sentence-transformers
  model in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import numpy as np

from coderag.rag.errors import DimensionMismatchError, EmbeddingProviderError

if TYPE_CHECKING:
    from coderag.config import RagSettings

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-embedding-001"
DEFAULT_BASE_URL = "http://localhost:3002"
DEFAULT_LOCAL_MODEL = "all-MiniLM-L6-v2"


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Text to fixed-length vector."""

    @property
    def model_name(self) -> str: ...

    @property
    def dimension(self) -> int: ...

    async def embed(self, texts: list[str]) -> list[list[float]]: ...


class OpenAIEmbeddingProvider:
    """OpenAI-compatible embeddings endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        dimension: int = 3072,
        base_url: str | None = DEFAULT_BASE_URL,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._dimension = dimension
        self._base_url = base_url
        self._headers = headers or {}
        self._client: Any = None

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def dimension(self) -> int:
        return self._dimension

    def _get_client(self) -> Any:
        """Lazy-create the AsyncOpenAI client on first use."""
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                default_headers=self._headers or None,
            )
        return self._client

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        client = self._get_client()
        response = await client.embeddings.create(
            model=self._model,
            input=texts,
            encoding_format="float",
        )
        vectors = [list(item.embedding or []) for item in response.data]
        if len(vectors) != len(texts):
            raise EmbeddingProviderError(
                f"Provider returned {len(vectors)} embeddings for {len(texts)} inputs"
            )
        for vector in vectors:
            if len(vector) != self._dimension:
                raise DimensionMismatchError(len(vector), self._dimension)
        return vectors


class SentenceTransformerEmbeddingProvider:
    """Local sentence-transformers model.

    The model is loaded on first use. Encoding runs in a worker thread so the
    event loop stays responsive.
    """

    def __init__(self, model_name: str = DEFAULT_LOCAL_MODEL, device: str | None = None) -> None:
        self._model_name = model_name
        self._device = device
        self._model: Any = None

    @property
    def model(self) -> Any:
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading embedding model %s", self._model_name)
            self._model = SentenceTransformer(self._model_name, device=self._device)
        return self._model

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimension(self) -> int:
        return int(self.model.get_sentence_embedding_dimension())

    def _encode(self, texts: list[str]) -> list[list[float]]:
        embeddings = self.model.encode(
            texts,
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return np.asarray(embeddings, dtype=np.float32).tolist()

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return await asyncio.to_thread(self._encode, texts)


def resolve_credential(credential: str | None) -> str | None:
    """Explicit credential, else the CODERAG_API_KEY environment variable."""
    return credential or os.environ.get("CODERAG_API_KEY") or None


def create_embedding_provider(
    settings: RagSettings,
    credential: str | None = None,
) -> EmbeddingProvider:
    """Build the provider named by ``settings.embedding_provider``."""
    kind = settings.embedding_provider

    if kind == "openai":
        api_key = resolve_credential(credential)
        if not api_key:
            raise EmbeddingProviderError(
                "No API credential for the embedding provider. "
                "Pass one explicitly or set CODERAG_API_KEY."
            )
        base_url = os.environ.get("CODERAG_EMBEDDING_BASE_URL") or settings.embedding_base_url
        return OpenAIEmbeddingProvider(
            api_key=api_key,
            model=settings.embedding_model,
            dimension=settings.embedding_dim,
            base_url=base_url,
        )

    if kind == "sentence-transformers":
        return SentenceTransformerEmbeddingProvider(settings.embedding_model)

    raise ValueError(f"Unknown embedding provider: {kind}")
