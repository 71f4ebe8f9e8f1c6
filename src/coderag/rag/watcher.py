"""Watch a workspace and feed file changes into the index.

Uses watchdog's Observer. Events are filtered through the allowlist and the
workspace ignore rules, debounced per path, and handed to the asyncio loop
through a queue. ``run_watch_loop`` applies them to the index one at a time.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from coderag.config import RagSettings, load_settings
from coderag.rag.allowlist import is_allowed
from coderag.rag.embeddings import EmbeddingProvider
from coderag.rag.errors import RagError
from coderag.rag.filesystem import LocalFileSystem
from coderag.rag.indexer import update_rag
from coderag.rag.schema import FileEvent

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE = 0.5

ChangeCallback = Callable[[str, FileEvent], None]


class RagEventHandler(FileSystemEventHandler):
    """Translate watchdog events into debounced ``(relative_path, FileEvent)`` pairs."""

    def __init__(
        self,
        file_system: LocalFileSystem,
        on_change: ChangeCallback,
        debounce: float = DEFAULT_DEBOUNCE,
    ) -> None:
        super().__init__()
        self.file_system = file_system
        self.on_change = on_change
        self.debounce = debounce
        self._lock = threading.Lock()
        self._pending: dict[str, FileEvent] = {}
        self._timer: threading.Timer | None = None

    def relative_path(self, path: str | bytes) -> str | None:
        """Workspace-relative path if the file is indexable, else None."""
        if isinstance(path, bytes):
            path = path.decode("utf-8", errors="replace")
        try:
            rel = Path(path).resolve().relative_to(self.file_system.root).as_posix()
        except ValueError:
            return None
        if not is_allowed(rel) or self.file_system.is_ignored(rel):
            return None
        parts = rel.split("/")
        for i in range(1, len(parts)):
            if self.file_system.is_ignored("/".join(parts[:i]), is_dir=True):
                return None
        return rel

    def flush(self) -> None:
        """Deliver every pending change now."""
        with self._lock:
            changes = dict(sorted(self._pending.items()))
            self._pending.clear()
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None

        for path, event in changes.items():
            try:
                self.on_change(path, event)
            except Exception as e:
                logger.warning("Error in file change callback for %s: %s", path, e)

    def schedule(self, path: str | bytes, event: FileEvent) -> None:
        rel = self.relative_path(path)
        if rel is None:
            return
        with self._lock:
            self._pending[rel] = event
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.schedule(event.src_path, FileEvent.ADD)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.schedule(event.src_path, FileEvent.UPDATE)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.schedule(event.src_path, FileEvent.DELETE)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self.schedule(event.src_path, FileEvent.DELETE)
        self.schedule(event.dest_path, FileEvent.ADD)


class WorkspaceWatcher:
    """Recursive watchdog observer over one workspace."""

    def __init__(
        self,
        file_system: LocalFileSystem,
        on_change: ChangeCallback,
        debounce: float = DEFAULT_DEBOUNCE,
    ) -> None:
        self.file_system = file_system
        self.handler = RagEventHandler(file_system, on_change, debounce)
        self._observer: Observer | None = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = Observer()
        observer.schedule(self.handler, str(self.file_system.root), recursive=True)
        observer.start()
        self._observer = observer
        logger.info("Watching %s for changes", self.file_system.root)

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5)
        self._observer = None
        self.handler.flush()
        logger.info("Stopped watching %s", self.file_system.root)

    def __enter__(self) -> WorkspaceWatcher:
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()


async def watch_workspace(
    workspace_root: Path | str,
    *,
    settings: RagSettings | None = None,
    debounce: float = DEFAULT_DEBOUNCE,
) -> AsyncIterator[tuple[str, FileEvent]]:
    """Yield ``(relative_path, FileEvent)`` for each debounced change."""
    root = Path(workspace_root).resolve()
    settings = settings or load_settings(root)
    file_system = LocalFileSystem(root, settings.respect_gitignore)

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[tuple[str, FileEvent]] = asyncio.Queue()

    def on_change(path: str, event: FileEvent) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, (path, event))

    watcher = WorkspaceWatcher(file_system, on_change, debounce)
    watcher.start()
    try:
        while True:
            yield await queue.get()
    finally:
        watcher.stop()


async def run_watch_loop(
    workspace_root: Path | str,
    credential: str | None = None,
    *,
    settings: RagSettings | None = None,
    provider: EmbeddingProvider | None = None,
    debounce: float = DEFAULT_DEBOUNCE,
    on_update: Callable[[str, FileEvent], None] | None = None,
    on_error: Callable[[Exception], None] | None = None,
) -> None:
    """Apply workspace changes to the index until cancelled."""
    root = Path(workspace_root).resolve()
    settings = settings or load_settings(root)
    file_system = LocalFileSystem(root, settings.respect_gitignore)

    async for path, event in watch_workspace(root, settings=settings, debounce=debounce):
        try:
            await update_rag(
                path, event, file_system, root, credential,
                settings=settings, provider=provider,
            )
        except RagError as e:
            logger.warning("Failed to apply %s for %s: %s", event.value, path, e)
            if on_error is not None:
                on_error(e)
            continue
        if on_update is not None:
            on_update(path, event)
