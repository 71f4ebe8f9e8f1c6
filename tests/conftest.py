"""Shared test fixtures for coderag."""

from __future__ import annotations

import hashlib
import json
import struct
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest

from coderag.config import RagSettings
from coderag.rag.filesystem import LocalFileSystem
from coderag.rag.manifests import ManifestStore
from coderag.rag.schema import IndexSchema
from coderag.rag.vector_store import VectorStore

TEST_DIM = 8


class FakeEmbeddingProvider:
    """Deterministic hash-based embeddings.

    Any request containing text of a path in ``fail_paths`` raises, which is
    how tests simulate provider outages for specific files.
    """

    def __init__(self, dimension: int = TEST_DIM) -> None:
        self._dimension = dimension
        self.calls: list[list[str]] = []
        self.fail_paths: set[str] = set()
        self.fail_all = False

    @property
    def model_name(self) -> str:
        return "fake-hash"

    @property
    def dimension(self) -> int:
        return self._dimension

    def vector(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        values = struct.unpack(f"{self._dimension}B", digest[: self._dimension])
        return [v / 255.0 for v in values]

    @property
    def embedded_texts(self) -> list[str]:
        return [t for call in self.calls for t in call]

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail_all:
            raise RuntimeError("provider unavailable")
        for text in texts:
            for path in self.fail_paths:
                if f"from the file {path}." in text:
                    raise RuntimeError(f"rate limited while embedding {path}")
        return [self.vector(t) for t in texts]


async def collect(agen: AsyncIterator[Any]) -> list[Any]:
    return [item async for item in agen]


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep user-level settings and credentials out of tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("CODERAG_API_KEY", raising=False)
    monkeypatch.delenv("CODERAG_EMBEDDING_BASE_URL", raising=False)
    monkeypatch.delenv("CODERAG_SERVICE_MODE", raising=False)
    monkeypatch.delenv("CODERAG_SERVICE_API_KEY", raising=False)
    return home


@pytest.fixture
def schema() -> IndexSchema:
    return IndexSchema(embedding_dim=TEST_DIM)


@pytest.fixture
def settings() -> RagSettings:
    return RagSettings(
        embedding_dim=TEST_DIM,
        concurrency=2,
        embed_batch_size=4,
        flush_threshold=5,
    )


@pytest.fixture
def provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A small source tree with indexable and non-indexable files."""
    root = tmp_path / "workspace"
    (root / "src").mkdir(parents=True)
    (root / "src" / "a.ts").write_text("export const a = 1;\n")
    (root / "src" / "b.ts").write_text("export const b = 2;\n")
    (root / "src" / "styles.css").write_text("body { margin: 0; }\n")
    (root / "README.md").write_text("# Workspace\n\nSample project.\n")
    (root / "Dockerfile").write_text("FROM python:3.12\n")
    (root / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n")
    (root / "node_modules" / "dep").mkdir(parents=True)
    (root / "node_modules" / "dep" / "index.js").write_text("module.exports = 1;\n")
    return root


@pytest.fixture
def file_system(workspace: Path) -> LocalFileSystem:
    return LocalFileSystem(workspace)


@pytest.fixture
def manifest_store(tmp_path: Path, schema: IndexSchema) -> ManifestStore:
    store = ManifestStore(tmp_path / "data" / "index.sqlite3", schema)
    store.open()
    return store


@pytest.fixture
def vector_store(tmp_path: Path, schema: IndexSchema) -> VectorStore:
    return VectorStore(tmp_path / "data" / "embeddings.lance", schema).open()


def write_settings(workspace: Path, **values: Any) -> None:
    path = workspace / ".coderag" / "settings.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(values))
