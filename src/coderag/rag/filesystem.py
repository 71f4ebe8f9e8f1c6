"""File-system access for the indexer.

The indexer only talks to the workspace through the ``FileSystem`` protocol,
so hosts can supply their own implementation (remote workspaces, editors with
unsaved buffers). ``LocalFileSystem`` is the on-disk default.
"""

from __future__ import annotations

import logging
import os
import re
from fnmatch import fnmatchcase
from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable

import pathspec

from coderag.rag.allowlist import normalize_relative_path

logger = logging.getLogger(__name__)

DEFAULT_IGNORE_PATTERNS = [
    "node_modules/",
    ".git/",
    ".coderag/",
    "dist/",
    "build/",
    "*.log",
    ".DS_Store",
    "coverage/",
    ".env*",
    "__pycache__/",
    ".venv/",
]

_BRACE = re.compile(r"\{([^{}]*)\}")


@runtime_checkable
class FileSystem(Protocol):
    """Workspace-rooted file access. All paths are workspace-relative."""

    def glob(self, pattern: str) -> list[str]: ...

    def read_bytes(self, path: str) -> bytes: ...

    def read_text(self, path: str) -> str: ...

    def resolve_path(self, path: str) -> str: ...

    def write_file(self, path: str, content: str | bytes) -> None: ...

    def delete_file(self, path: str) -> None: ...


def expand_braces(pattern: str) -> list[str]:
    """Expand ``{a,b}`` alternatives: ``*.{js,ts}`` -> ``[*.js, *.ts]``."""
    match = _BRACE.search(pattern)
    if match is None:
        return [pattern]
    head, tail = pattern[:match.start()], pattern[match.end():]
    expanded: list[str] = []
    for option in match.group(1).split(","):
        expanded.extend(expand_braces(head + option + tail))
    return expanded


def match_glob(relative_path: str, pattern: str) -> bool:
    """Match a relative posix path against a single (brace-free) glob."""
    if pattern.startswith("**/"):
        rest = pattern[3:]
        if "/" not in rest:
            return fnmatchcase(PurePosixPath(relative_path).name, rest)
        return fnmatchcase(relative_path, rest) or fnmatchcase(relative_path, pattern)
    return fnmatchcase(relative_path, pattern)


class LocalFileSystem:
    """``FileSystem`` backed by a directory on disk."""

    def __init__(self, root: Path | str, respect_gitignore: bool = True) -> None:
        self.root = Path(root).resolve()
        lines = list(DEFAULT_IGNORE_PATTERNS)
        if respect_gitignore:
            gitignore = self.root / ".gitignore"
            if gitignore.is_file():
                try:
                    lines.extend(gitignore.read_text(encoding="utf-8").splitlines())
                except OSError as e:
                    logger.warning("Could not read %s: %s", gitignore, e)
        self._ignore = pathspec.PathSpec.from_lines("gitwildmatch", lines)

    def is_ignored(self, path: str, is_dir: bool = False) -> bool:
        rel = normalize_relative_path(path)
        return self._ignore.match_file(rel + "/" if is_dir else rel)

    def _abs(self, path: str) -> Path:
        return self.root / normalize_relative_path(path)

    def iter_files(self) -> list[str]:
        """Every non-ignored file under the root, relative and sorted."""
        if not self.root.is_dir():
            raise FileNotFoundError(f"Workspace root not found: {self.root}")

        files: list[str] = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            rel_dir = Path(dirpath).relative_to(self.root).as_posix()
            prefix = "" if rel_dir == "." else rel_dir + "/"
            dirnames[:] = [
                d for d in dirnames if not self.is_ignored(prefix + d, is_dir=True)
            ]
            for name in filenames:
                rel = prefix + name
                if not self.is_ignored(rel):
                    files.append(rel)
        return sorted(files)

    def glob(self, pattern: str) -> list[str]:
        patterns = expand_braces(pattern)
        return [
            rel for rel in self.iter_files()
            if any(match_glob(rel, p) for p in patterns)
        ]

    def read_bytes(self, path: str) -> bytes:
        return self._abs(path).read_bytes()

    def read_text(self, path: str) -> str:
        return self.read_bytes(path).decode("utf-8", errors="replace")

    def resolve_path(self, path: str) -> str:
        return str(self._abs(path))

    def exists(self, path: str) -> bool:
        return self._abs(path).is_file()

    def write_file(self, path: str, content: str | bytes) -> None:
        target = self._abs(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            target.write_bytes(content)
        else:
            target.write_text(content, encoding="utf-8")

    def delete_file(self, path: str) -> None:
        self._abs(path).unlink(missing_ok=True)
