"""Workspace path helpers for coderag."""

from __future__ import annotations

from pathlib import Path

DATA_DIR_NAME = ".coderag"
MANIFEST_DB_NAME = "index.sqlite3"
VECTOR_DB_NAME = "embeddings.lance"


def find_workspace_root(start: Path | None = None) -> Path | None:
    """Walk up from start directory to find the workspace root.

    The workspace root is identified by a .coderag/ directory or, failing
    that, a .git/ directory.
    """
    current = (start or Path.cwd()).resolve()
    for directory in [current, *current.parents]:
        if (directory / DATA_DIR_NAME).is_dir():
            return directory
    for directory in [current, *current.parents]:
        if (directory / ".git").exists():
            return directory
    return None


def get_workspace_root(start: Path | None = None) -> Path:
    """Workspace root, falling back to the start directory itself."""
    return find_workspace_root(start) or (start or Path.cwd()).resolve()


def get_data_dir(workspace_root: Path, data_dir: str | Path = DATA_DIR_NAME) -> Path:
    """Index data directory; relative values resolve against the workspace."""
    path = Path(data_dir).expanduser()
    if not path.is_absolute():
        path = workspace_root / path
    return path


def get_manifest_db_path(workspace_root: Path, data_dir: str | Path = DATA_DIR_NAME) -> Path:
    return get_data_dir(workspace_root, data_dir) / MANIFEST_DB_NAME


def get_vector_db_path(workspace_root: Path, data_dir: str | Path = DATA_DIR_NAME) -> Path:
    return get_data_dir(workspace_root, data_dir) / VECTOR_DB_NAME


def get_user_settings_path() -> Path:
    """Get user-level settings.json path."""
    return Path.home() / DATA_DIR_NAME / "settings.json"


def get_workspace_settings_path(workspace_root: Path) -> Path:
    """Get workspace-level settings.json path."""
    return workspace_root / DATA_DIR_NAME / "settings.json"
