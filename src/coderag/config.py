"""coderag configuration management.

Loads and merges settings from workspace and user-level settings.json files.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

from coderag.rag.schema import EMBEDDING_DIM, RAG_VERSION, SCHEMA_VERSION, TABLE_NAME, IndexSchema
from coderag.utils.paths import (
    DATA_DIR_NAME,
    get_user_settings_path,
    get_workspace_settings_path,
)

EMBEDDING_PROVIDERS = ("openai", "sentence-transformers")

DEFAULT_SETTINGS: dict[str, Any] = {
    "embedding_provider": "openai",
    "embedding_model": "gemini-embedding-001",
    "embedding_base_url": "http://localhost:3002",
    "embedding_dim": EMBEDDING_DIM,
    "rag_version": RAG_VERSION,
    "schema_version": SCHEMA_VERSION,
    "chunk_size": 50,
    "concurrency": 10,
    "embed_batch_size": 100,
    "flush_threshold": 250,
    "max_file_size": 10 * 1024 * 1024,
    "continue_on_error": True,
    "data_dir": DATA_DIR_NAME,
    "respect_gitignore": True,
}


@dataclass
class RagSettings:
    """Merged coderag settings."""

    embedding_provider: str = "openai"
    embedding_model: str = "gemini-embedding-001"
    embedding_base_url: str | None = "http://localhost:3002"
    embedding_dim: int = EMBEDDING_DIM
    rag_version: int = RAG_VERSION
    schema_version: int = SCHEMA_VERSION
    chunk_size: int = 50
    concurrency: int = 10
    embed_batch_size: int = 100
    flush_threshold: int = 250
    max_file_size: int = 10 * 1024 * 1024
    continue_on_error: bool = True
    data_dir: str = DATA_DIR_NAME
    respect_gitignore: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RagSettings:
        known = {f.name for f in fields(cls)}
        merged = deep_merge(DEFAULT_SETTINGS, data)
        return cls(**{k: v for k, v in merged.items() if k in known})

    def index_schema(self) -> IndexSchema:
        """Version gates derived from these settings."""
        return IndexSchema(
            rag_version=self.rag_version,
            embedding_dim=self.embedding_dim,
            schema_version=self.schema_version,
            table_name=TABLE_NAME,
        )


def load_json_file(path: Path) -> dict[str, Any]:
    """Load a JSON file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError):
        return {}


def deep_merge(base: dict, override: dict) -> dict:
    """Deep merge override into base, returning new dict.

    - Dicts are recursively merged
    - Lists are replaced (not appended)
    - Scalars are replaced
    """
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_settings(workspace_root: Path | None = None) -> RagSettings:
    """Load and merge settings from user + workspace levels.

    Precedence: workspace settings override user settings override defaults.
    """
    merged = dict(DEFAULT_SETTINGS)

    user_settings = load_json_file(get_user_settings_path())
    if user_settings:
        merged = deep_merge(merged, user_settings)

    if workspace_root is not None:
        workspace_settings = load_json_file(get_workspace_settings_path(workspace_root))
        if workspace_settings:
            merged = deep_merge(merged, workspace_settings)

    return RagSettings.from_dict(merged)


def save_settings(settings: RagSettings, path: Path) -> None:
    """Save settings to a JSON file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(settings.to_dict(), indent=2) + "\n",
        encoding="utf-8",
    )


def coerce_value(key: str, raw: str) -> Any:
    """Parse a command-line string into the type of the named setting."""
    if key not in DEFAULT_SETTINGS:
        raise KeyError(key)
    default = DEFAULT_SETTINGS[key]
    if isinstance(default, bool):
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"{key} expects a boolean, got {raw!r}")
    if isinstance(default, int):
        return int(raw)
    if raw.lower() in ("null", "none") and key == "embedding_base_url":
        return None
    return raw


def validate_settings(settings: RagSettings) -> list[str]:
    """Validate settings, returning list of error messages (empty if valid)."""
    errors = []

    if settings.embedding_provider not in EMBEDDING_PROVIDERS:
        errors.append(
            f"embedding_provider must be one of {', '.join(EMBEDDING_PROVIDERS)}"
        )

    if not isinstance(settings.embedding_model, str) or not settings.embedding_model:
        errors.append("embedding_model must be a non-empty string")

    for key in (
        "embedding_dim", "rag_version", "schema_version", "chunk_size",
        "concurrency", "embed_batch_size", "flush_threshold", "max_file_size",
    ):
        value = getattr(settings, key)
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            errors.append(f"{key} must be a positive integer")

    for key in ("continue_on_error", "respect_gitignore"):
        if not isinstance(getattr(settings, key), bool):
            errors.append(f"{key} must be a boolean")

    if not isinstance(settings.data_dir, str) or not settings.data_dir:
        errors.append("data_dir must be a non-empty string")

    return errors
