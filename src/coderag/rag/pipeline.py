"""Concurrent embedding of chunks.

Chunks are grouped into request batches that a bounded pool of asyncio
workers pulls from a shared queue. Results are yielded as batches complete,
so chunks of different files may interleave; every ``EmbeddedChunk`` carries
its ``chunk_index`` and ``total_chunks`` for regrouping downstream.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence

from coderag.rag.chunker import describe_chunk
from coderag.rag.embeddings import EmbeddingProvider
from coderag.rag.errors import EmbeddingProviderError
from coderag.rag.schema import Chunk, EmbeddedChunk

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10
DEFAULT_BATCH_SIZE = 100


def _is_vector(value: object) -> bool:
    # numpy rows from local models are not Sequence subclasses
    return hasattr(value, "__len__") and hasattr(value, "__iter__") and not isinstance(value, (str, bytes))


def make_batches(chunks: Sequence[Chunk], batch_size: int) -> list[list[Chunk]]:
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    return [list(chunks[i:i + batch_size]) for i in range(0, len(chunks), batch_size)]


async def _embed_batch(
    provider: EmbeddingProvider,
    batch: list[Chunk],
    dimension: int | None,
) -> list[EmbeddedChunk]:
    paths = [c.relative_path for c in batch]
    try:
        vectors = await provider.embed([describe_chunk(c) for c in batch])
    except asyncio.CancelledError:
        raise
    except Exception as e:
        error = EmbeddingProviderError(f"Embedding request failed: {e}", paths=paths)
        error.__cause__ = e
        raise error

    if not _is_vector(vectors):
        raise EmbeddingProviderError(
            f"Provider returned {type(vectors).__name__} instead of a list of embeddings",
            paths=paths,
        )
    if len(vectors) != len(batch):
        raise EmbeddingProviderError(
            f"Provider returned {len(vectors)} embeddings for {len(batch)} chunks",
            paths=paths,
        )
    for chunk, vector in zip(batch, vectors):
        if not _is_vector(vector):
            raise EmbeddingProviderError(
                f"Invalid embedding for {chunk.relative_path} chunk {chunk.chunk_index}: "
                f"got {type(vector).__name__}",
                paths=paths,
            )
        if dimension is not None and len(vector) != dimension:
            raise EmbeddingProviderError(
                f"Invalid embedding for {chunk.relative_path} chunk {chunk.chunk_index}: "
                f"{len(vector)} dimensions, expected {dimension}",
                paths=paths,
            )

    return [EmbeddedChunk(chunk=c, embedding=list(v)) for c, v in zip(batch, vectors)]


async def embed_chunks(
    chunks: Sequence[Chunk],
    provider: EmbeddingProvider,
    concurrency: int = DEFAULT_CONCURRENCY,
    batch_size: int = DEFAULT_BATCH_SIZE,
    dimension: int | None = None,
) -> AsyncIterator[EmbeddedChunk]:
    """Embed chunks with at most ``concurrency`` requests in flight.

    Raises:
        EmbeddingProviderError: On the first failed batch. Remaining workers
            are cancelled and the stream ends.
    """
    batches = make_batches(chunks, batch_size)
    if not batches:
        return

    work: asyncio.Queue[list[Chunk]] = asyncio.Queue()
    for batch in batches:
        work.put_nowait(batch)
    results: asyncio.Queue[list[EmbeddedChunk] | EmbeddingProviderError] = asyncio.Queue()

    async def worker() -> None:
        while True:
            try:
                batch = work.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                embedded = await _embed_batch(provider, batch, dimension)
            except EmbeddingProviderError as e:
                await results.put(e)
                return
            except Exception as e:
                # the consumer waits for one result per batch
                logger.exception("Embedding worker failed")
                error = EmbeddingProviderError(
                    f"Embedding batch failed: {e}",
                    paths=[c.relative_path for c in batch],
                )
                error.__cause__ = e
                await results.put(error)
                return
            await results.put(embedded)

    workers = [
        asyncio.create_task(worker())
        for _ in range(max(1, min(concurrency, len(batches))))
    ]
    logger.debug("Embedding %d chunks in %d batches with %d workers",
                 len(chunks), len(batches), len(workers))

    try:
        for _ in range(len(batches)):
            item = await results.get()
            if isinstance(item, EmbeddingProviderError):
                raise item
            for embedded in item:
                yield embedded
    finally:
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
