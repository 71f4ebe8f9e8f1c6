"""Indexing orchestrator.

Keeps the vector table in step with the workspace. A full run goes through

    DIFFING -> ADDING -> UPDATING -> REMOVING -> METADATA_SYNC -> DONE

and reports one ``RagUpdate`` per file handled. Vectors are always written
before the manifest that claims them, and removed before the manifest is
dropped, so an interrupted run leaves at worst orphan rows or orphan
manifests that the next run reconciles.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from pathlib import Path

from coderag.config import RagSettings, load_settings
from coderag.rag.allowlist import is_allowed, normalize_relative_path
from coderag.rag.chunker import chunk_text
from coderag.rag.diff import get_rag_files_diff, read_indexable
from coderag.rag.embeddings import EmbeddingProvider, create_embedding_provider
from coderag.rag.errors import (
    DimensionMismatchError,
    EmbeddingProviderError,
    RagError,
    StorageError,
)
from coderag.rag.filesystem import FileSystem, LocalFileSystem
from coderag.rag.manifests import ManifestStore, build_manifest
from coderag.rag.pipeline import embed_chunks
from coderag.rag.reconcile import delete_orphan_manifests, find_orphans
from coderag.rag.schema import (
    Chunk,
    EmbeddedChunk,
    EmbeddingRecord,
    FileEvent,
    IndexPhase,
    Manifest,
    RagMetadata,
    RagUpdate,
    utc_now,
)
from coderag.rag.vector_store import VectorStore
from coderag.utils.paths import get_manifest_db_path, get_vector_db_path

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[Exception], None]


def open_stores(workspace_root: Path, settings: RagSettings) -> tuple[ManifestStore, VectorStore]:
    """Open the manifest store and vector store of a workspace."""
    schema = settings.index_schema()
    manifest_store = ManifestStore(get_manifest_db_path(workspace_root, settings.data_dir), schema)
    manifest_store.open()
    vector_store = VectorStore(get_vector_db_path(workspace_root, settings.data_dir), schema)
    vector_store.open()
    return manifest_store, vector_store


class _IndexRun:
    """Mutable state of one ``initialize_rag`` run."""

    def __init__(
        self,
        file_system: FileSystem,
        manifest_store: ManifestStore,
        vector_store: VectorStore,
        settings: RagSettings,
        provider_factory: Callable[[], EmbeddingProvider],
        on_error: ErrorCallback | None,
    ) -> None:
        self.file_system = file_system
        self.manifest_store = manifest_store
        self.vector_store = vector_store
        self.settings = settings
        self.schema = vector_store.schema
        self.on_error = on_error
        self.progress = 0
        self.total = 0
        self._provider_factory = provider_factory
        self._provider: EmbeddingProvider | None = None
        self._rows: list[EmbeddingRecord] = []
        self._pending: list[Manifest] = []

    def report(self, error: Exception) -> None:
        logger.warning("%s", error)
        if self.on_error is not None:
            self.on_error(error)

    def advance(self) -> RagUpdate:
        self.progress += 1
        return RagUpdate(progress=self.progress, total=self.total)

    def provider(self) -> EmbeddingProvider:
        if self._provider is None:
            self._provider = self._provider_factory()
        return self._provider

    def prepare(self, path: str, delete_first: bool) -> tuple[Manifest, list[Chunk]] | None:
        """Read and chunk one file. None means the file is skipped."""
        if delete_first:
            try:
                self.vector_store.delete_by_path(path)
            except StorageError as e:
                self.report(StorageError(f"Failed to delete old records for {path}: {e}"))
                return None

        try:
            data = read_indexable(self.file_system, path, self.settings.max_file_size)
        except (OSError, ValueError) as e:
            self.report(RagError(f"Error processing file {path}: {e}"))
            return None
        if data is None:
            logger.info("Skipping %s: no longer indexable", path)
            return None

        manifest = build_manifest(path, data, self.schema.rag_version)
        chunks = chunk_text(path, data.decode("utf-8", errors="replace"), self.settings.chunk_size)
        if not chunks:
            return None
        return manifest, chunks

    def buffer(self, manifest: Manifest, group: dict[int, EmbeddedChunk]) -> None:
        absolute_path = self.file_system.resolve_path(manifest.relative_path)
        for index in sorted(group):
            self._rows.append(EmbeddingRecord.from_embedded_chunk(
                group[index], absolute_path, self.schema.rag_version,
            ))
        self._pending.append(manifest)

    @property
    def buffered_rows(self) -> int:
        return len(self._rows)

    def flush(self) -> list[str]:
        """Insert buffered rows, then commit their manifests.

        Returns the paths that were handled, whether or not the write
        succeeded. A failed insert commits no manifest.
        """
        if not self._pending:
            return []
        rows, pending = self._rows, self._pending
        self._rows, self._pending = [], []
        paths = [m.relative_path for m in pending]

        try:
            self.vector_store.insert_batch(rows)
        except (StorageError, DimensionMismatchError) as e:
            self.report(StorageError(f"Failed to write embeddings for {len(paths)} files: {e}"))
            return paths

        try:
            self.manifest_store.put_many(pending)
        except StorageError as e:
            self.report(StorageError(f"Failed to save manifests for {len(paths)} files: {e}"))
        return paths

    async def index_files(self, paths: list[str], delete_first: set[str]) -> AsyncIterator[RagUpdate]:
        """Embed and store every file in ``paths``."""
        prepared: dict[str, tuple[Manifest, list[Chunk]]] = {}
        for path in paths:
            item = self.prepare(path, path in delete_first)
            if item is None:
                yield self.advance()
            else:
                prepared[path] = item

        pending = list(prepared)
        isolate = False
        while pending:
            attempt = pending[:1] if isolate else pending
            done: set[str] = set()
            failed: set[str] = set()
            try:
                async with aclosing(self.embed_files(attempt, prepared, done)) as updates:
                    async for update in updates:
                        yield update
            except EmbeddingProviderError as e:
                self.report(e)
                unfinished = [p for p in attempt if p not in done]
                if not self.settings.continue_on_error or not e.paths:
                    failed = {p for p in pending if p not in done}
                elif len(unfinished) == 1:
                    failed = set(unfinished)
                else:
                    # A shared batch failed; retry one file at a time to find the culprit.
                    logger.info("Retrying %d files individually", len(unfinished))
                    isolate = True
            for path in pending:
                if path in failed:
                    yield self.advance()
            pending = [p for p in pending if p not in done and p not in failed]

        for _ in self.flush():
            yield self.advance()

    async def embed_files(
        self,
        paths: list[str],
        prepared: dict[str, tuple[Manifest, list[Chunk]]],
        done: set[str],
    ) -> AsyncIterator[RagUpdate]:
        """Embed one attempt's files, buffering each as soon as all its chunks arrive."""
        groups: dict[str, dict[int, EmbeddedChunk]] = {p: {} for p in paths}
        stream = embed_chunks(
            [c for p in paths for c in prepared[p][1]],
            self.provider(),
            concurrency=self.settings.concurrency,
            batch_size=self.settings.embed_batch_size,
            dimension=self.schema.embedding_dim,
        )
        async with aclosing(stream):
            async for embedded in stream:
                path = embedded.relative_path
                group = groups[path]
                group[embedded.chunk.chunk_index] = embedded
                if len(group) < embedded.chunk.total_chunks:
                    continue
                self.buffer(prepared[path][0], group)
                done.add(path)
                if self.buffered_rows >= self.settings.flush_threshold:
                    for _ in self.flush():
                        yield self.advance()

    def remove_file(self, path: str) -> None:
        try:
            self.vector_store.delete_by_path(path)
        except StorageError as e:
            self.report(StorageError(f"Failed to delete embeddings for {path}: {e}"))
            return
        try:
            self.manifest_store.delete(path)
        except StorageError as e:
            self.report(StorageError(f"Failed to delete manifest for {path}: {e}"))


def _log_phase(phase: IndexPhase) -> None:
    logger.info("Indexing phase: %s", phase.value)


async def initialize_rag(
    workspace_root: Path | str,
    file_system: FileSystem | None = None,
    credential: str | None = None,
    on_error: ErrorCallback | None = None,
    *,
    settings: RagSettings | None = None,
    provider: EmbeddingProvider | None = None,
) -> AsyncIterator[RagUpdate]:
    """Bring the index in line with the workspace, yielding progress.

    Args:
        workspace_root: Directory being indexed; index data lives under it
        file_system: Workspace file access (defaults to ``LocalFileSystem``)
        credential: API key for the embedding provider
        on_error: Receives per-file errors; the run continues after each
        settings: Overrides settings loaded from the workspace
        provider: Overrides the provider built from settings

    Yields:
        ``RagUpdate(progress, total)`` once per file handled. A run with
        nothing to do yields a single ``RagUpdate(0, 0)``.
    """
    root = Path(workspace_root).resolve()
    settings = settings or load_settings(root)
    file_system = file_system or LocalFileSystem(root, settings.respect_gitignore)

    _log_phase(IndexPhase.DIFFING)
    manifest_store, vector_store = open_stores(root, settings)
    if vector_store.ensure_schema(manifest_store):
        logger.info("Index for %s was rebuilt; all files will be re-embedded", root)

    orphans = find_orphans(vector_store, manifest_store)
    delete_orphan_manifests(manifest_store, orphans.orphan_manifests)
    diff = get_rag_files_diff(file_system, manifest_store, vector_store.schema, settings.max_file_size)

    to_add = [m.relative_path for m in diff.to_add]
    to_update = [m.relative_path for m in diff.to_update]
    to_remove = [m.relative_path for m in diff.to_remove]

    # Rows without a manifest: re-embed if the file is still there, else drop.
    adding = set(to_add)
    stale = {p for p in orphans.orphan_embeddings if p in adding}
    to_remove = sorted(set(to_remove) | {p for p in orphans.orphan_embeddings if p not in adding})

    def provider_factory() -> EmbeddingProvider:
        return provider or create_embedding_provider(settings, credential)

    run = _IndexRun(
        file_system,
        manifest_store,
        vector_store,
        settings,
        provider_factory=provider_factory,
        on_error=on_error,
    )
    run.total = len(to_add) + len(to_update) + len(to_remove)
    logger.info(
        "Diff for %s: %d to add, %d to update, %d to remove",
        root, len(to_add), len(to_update), len(to_remove),
    )

    if run.total == 0:
        _log_phase(IndexPhase.METADATA_SYNC)
        manifest_store.sync_metadata()
        _log_phase(IndexPhase.DONE)
        yield RagUpdate(progress=0, total=0)
        return

    try:
        _log_phase(IndexPhase.ADDING)
        async with aclosing(run.index_files(to_add, delete_first=stale)) as updates:
            async for update in updates:
                yield update

        _log_phase(IndexPhase.UPDATING)
        async with aclosing(run.index_files(to_update, delete_first=set(to_update))) as updates:
            async for update in updates:
                yield update

        _log_phase(IndexPhase.REMOVING)
        for path in to_remove:
            run.remove_file(path)
            yield run.advance()

        _log_phase(IndexPhase.METADATA_SYNC)
        try:
            manifest_store.sync_metadata()
        except StorageError as e:
            run.report(e)
        _log_phase(IndexPhase.DONE)
    finally:
        # Consumer stopped early: persist whole files already embedded.
        run.flush()


async def update_rag(
    relative_path: str,
    event: FileEvent | str,
    file_system: FileSystem | None,
    workspace_root: Path | str,
    credential: str | None = None,
    *,
    settings: RagSettings | None = None,
    provider: EmbeddingProvider | None = None,
) -> None:
    """Apply a single file change to the index.

    Ineligible paths are ignored. An add or update of a file that is gone or
    blank is handled as a delete. Provider and storage errors propagate.
    """
    root = Path(workspace_root).resolve()
    settings = settings or load_settings(root)
    file_system = file_system or LocalFileSystem(root, settings.respect_gitignore)
    path = normalize_relative_path(relative_path)
    event = FileEvent(event)

    if not is_allowed(path):
        logger.debug("Ignoring %s event for %s: not an indexable file", event.value, path)
        return
    if isinstance(file_system, LocalFileSystem) and file_system.is_ignored(path):
        logger.debug("Ignoring %s event for %s: path is ignored", event.value, path)
        return

    manifest_store, vector_store = open_stores(root, settings)
    vector_store.ensure_schema(manifest_store)
    schema = vector_store.schema

    data: bytes | None = None
    if event is not FileEvent.DELETE:
        try:
            data = read_indexable(file_system, path, settings.max_file_size)
        except (OSError, ValueError) as e:
            logger.debug("Cannot read %s (%s); treating as delete", path, e)

    if data is None:
        vector_store.delete_by_path(path)
        manifest_store.delete(path)
        manifest_store.sync_metadata()
        logger.info("Removed %s from index", path)
        return

    chunks = chunk_text(path, data.decode("utf-8", errors="replace"), settings.chunk_size)
    provider = provider or create_embedding_provider(settings, credential)
    embedded = [
        e async for e in embed_chunks(
            chunks,
            provider,
            concurrency=settings.concurrency,
            batch_size=settings.embed_batch_size,
            dimension=schema.embedding_dim,
        )
    ]
    embedded.sort(key=lambda e: e.chunk.chunk_index)

    absolute_path = file_system.resolve_path(path)
    records = [
        EmbeddingRecord.from_embedded_chunk(e, absolute_path, schema.rag_version)
        for e in embedded
    ]
    vector_store.delete_by_path(path)
    vector_store.insert_batch(records)
    manifest_store.put(build_manifest(path, data, schema.rag_version))
    manifest_store.sync_metadata()
    logger.info("Indexed %s (%d chunks)", path, len(records))


def get_rag_metadata(workspace_root: Path | str, *, settings: RagSettings | None = None) -> RagMetadata:
    """Index-wide metadata: last refresh time and number of indexed files.

    Read-only. A workspace that was never indexed gets an empty record and
    nothing is written to disk.
    """
    root = Path(workspace_root).resolve()
    settings = settings or load_settings(root)
    schema = settings.index_schema()
    db_path = get_manifest_db_path(root, settings.data_dir)

    metadata = None
    if db_path.exists():
        metadata = ManifestStore(db_path, schema).get_metadata()
    if metadata is None:
        metadata = RagMetadata(
            rag_version=schema.rag_version,
            schema_version=schema.schema_version,
            initialized_at=utc_now(),
        )
    return metadata
