"""Record types and LanceDB table schema for the codebase index."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import pyarrow as pa


RAG_VERSION = 3
SCHEMA_VERSION = 1
EMBEDDING_DIM = 3072  # gemini-embedding-001
TABLE_NAME = "codebase_embeddings"
METADATA_KEY = "schema"


@dataclass(frozen=True)
class IndexSchema:
    """Version gates for one index.

    Passed explicitly into the stores so that several workspaces (or tests)
    can run with different versions and dimensions in one process.
    """

    rag_version: int = RAG_VERSION
    embedding_dim: int = EMBEDDING_DIM
    schema_version: int = SCHEMA_VERSION
    table_name: str = TABLE_NAME

    def arrow_schema(self) -> pa.Schema:
        """Arrow schema of the embedding table."""
        return pa.schema([
            pa.field("absolute_path", pa.string()),
            pa.field("relative_path", pa.string()),
            pa.field("chunk_index", pa.int32()),
            pa.field("total_chunks", pa.int32()),
            pa.field("content", pa.string()),
            pa.field("embedding", pa.list_(pa.float32(), self.embedding_dim)),
            pa.field("start_line", pa.int32()),
            pa.field("end_line", pa.int32()),
            pa.field("rag_version", pa.int32()),
            pa.field("indexed_at", pa.timestamp("ms", tz="UTC")),
        ])


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FileEvent(str, Enum):
    """Change notifications accepted by ``update_rag``."""

    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


class IndexPhase(Enum):
    """Orchestrator phases, in execution order."""

    DIFFING = "diffing"
    ADDING = "adding"
    UPDATING = "updating"
    REMOVING = "removing"
    METADATA_SYNC = "metadata_sync"
    DONE = "done"


@dataclass
class Manifest:
    """Content fingerprint of one indexed file."""
    relative_path: str
    content_hash: str
    rag_version: int
    indexed_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "relative_path": self.relative_path,
            "content_hash": self.content_hash,
            "rag_version": self.rag_version,
            "indexed_at": self.indexed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Manifest:
        return cls(
            relative_path=data["relative_path"],
            content_hash=data["content_hash"],
            rag_version=int(data["rag_version"]),
            indexed_at=datetime.fromisoformat(data["indexed_at"]),
        )


@dataclass
class Chunk:
    """A contiguous line range of one file."""
    relative_path: str
    chunk_index: int
    total_chunks: int
    start_line: int
    end_line: int
    content: str


@dataclass
class EmbeddedChunk:
    """A chunk paired with its embedding vector."""
    chunk: Chunk
    embedding: list[float]

    @property
    def relative_path(self) -> str:
        return self.chunk.relative_path


@dataclass
class EmbeddingRecord:
    """One row of the embedding table."""
    absolute_path: str
    relative_path: str
    chunk_index: int
    total_chunks: int
    content: str
    embedding: list[float]
    start_line: int
    end_line: int
    rag_version: int
    indexed_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_embedded_chunk(
        cls,
        embedded: EmbeddedChunk,
        absolute_path: str,
        rag_version: int,
    ) -> EmbeddingRecord:
        chunk = embedded.chunk
        return cls(
            absolute_path=absolute_path,
            relative_path=chunk.relative_path,
            chunk_index=chunk.chunk_index,
            total_chunks=chunk.total_chunks,
            content=chunk.content,
            embedding=list(embedded.embedding),
            start_line=chunk.start_line,
            end_line=chunk.end_line,
            rag_version=rag_version,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "absolute_path": self.absolute_path,
            "relative_path": self.relative_path,
            "chunk_index": self.chunk_index,
            "total_chunks": self.total_chunks,
            "content": self.content,
            "embedding": self.embedding,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "rag_version": self.rag_version,
            "indexed_at": self.indexed_at,
        }


@dataclass
class RagMetadata:
    """Singleton record describing the index as a whole."""
    rag_version: int
    schema_version: int
    initialized_at: datetime
    last_indexed_at: datetime | None = None
    indexed_files: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "rag_version": self.rag_version,
            "schema_version": self.schema_version,
            "initialized_at": self.initialized_at.isoformat(),
            "last_indexed_at": self.last_indexed_at.isoformat() if self.last_indexed_at else None,
            "indexed_files": self.indexed_files,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RagMetadata:
        last = data.get("last_indexed_at")
        return cls(
            rag_version=int(data["rag_version"]),
            schema_version=int(data["schema_version"]),
            initialized_at=datetime.fromisoformat(data["initialized_at"]),
            last_indexed_at=datetime.fromisoformat(last) if last else None,
            indexed_files=int(data.get("indexed_files", 0)),
        )


@dataclass
class SearchResult:
    """A single nearest-neighbour hit."""
    relative_path: str
    absolute_path: str
    content: str
    start_line: int
    end_line: int
    chunk_index: int
    distance: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "relative_path": self.relative_path,
            "absolute_path": self.absolute_path,
            "content": self.content,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "chunk_index": self.chunk_index,
            "distance": self.distance,
        }


@dataclass(frozen=True)
class RagUpdate:
    """Progress event emitted once per file handled by an indexing run."""
    progress: int
    total: int
