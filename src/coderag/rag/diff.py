"""Compare the workspace on disk with the stored manifests.

Change detection is by content hash and rag version only; timestamps are
never compared.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from coderag.rag.allowlist import (
    extension_glob_pattern,
    filename_glob_pattern,
    is_allowed,
    normalize_relative_path,
)
from coderag.rag.errors import StorageError
from coderag.rag.filesystem import FileSystem
from coderag.rag.manifests import ManifestStore, build_manifest
from coderag.rag.schema import IndexSchema, Manifest

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024


@dataclass
class RagFilesDiff:
    """Work lists for one indexing run, each sorted by path."""
    to_add: list[Manifest] = field(default_factory=list)
    to_update: list[Manifest] = field(default_factory=list)
    to_remove: list[Manifest] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_add or self.to_update or self.to_remove)


def read_indexable(
    file_system: FileSystem,
    relative_path: str,
    max_file_size: int = MAX_FILE_SIZE,
) -> bytes | None:
    """Raw bytes of an indexable file, or None if it should not be indexed.

    Oversized and blank files are not indexable. Read errors propagate.
    """
    data = file_system.read_bytes(relative_path)
    if len(data) > max_file_size:
        logger.debug("Skipping %s: %d bytes exceeds %d", relative_path, len(data), max_file_size)
        return None
    if not data.strip():
        return None
    return data


def list_candidate_files(file_system: FileSystem) -> set[str]:
    """Union of the extension glob and the exact-filename glob."""
    files: set[str] = set()

    try:
        matched = file_system.glob(extension_glob_pattern())
    except Exception as e:
        raise StorageError(f"Failed to get files with extensions: {e}") from e
    files.update(normalize_relative_path(p) for p in matched)

    try:
        matched = file_system.glob(filename_glob_pattern())
    except Exception as e:
        logger.warning("Failed to get specific filenames: %s", e)
    else:
        files.update(normalize_relative_path(p) for p in matched)

    return {p for p in files if is_allowed(p)}


def get_local_manifests(
    file_system: FileSystem,
    schema: IndexSchema,
    max_file_size: int = MAX_FILE_SIZE,
) -> dict[str, Manifest]:
    """Transient manifests for every eligible file on disk."""
    manifests: dict[str, Manifest] = {}
    for path in sorted(list_candidate_files(file_system)):
        try:
            data = read_indexable(file_system, path, max_file_size)
        except (OSError, ValueError) as e:
            logger.warning("Failed to get file manifest for %s: %s", path, e)
            continue
        if data is None:
            continue
        manifests[path] = build_manifest(path, data, schema.rag_version)
    return manifests


def compare_manifests(
    local: dict[str, Manifest],
    stored: dict[str, Manifest],
) -> RagFilesDiff:
    diff = RagFilesDiff()
    for path in sorted(local):
        manifest = local[path]
        previous = stored.get(path)
        if previous is None:
            diff.to_add.append(manifest)
        elif (
            previous.content_hash != manifest.content_hash
            or previous.rag_version != manifest.rag_version
        ):
            diff.to_update.append(manifest)
    for path in sorted(stored):
        if path not in local:
            diff.to_remove.append(stored[path])
    return diff


def get_rag_files_diff(
    file_system: FileSystem,
    manifest_store: ManifestStore,
    schema: IndexSchema | None = None,
    max_file_size: int = MAX_FILE_SIZE,
) -> RagFilesDiff:
    """Partition the workspace into files to add, update and remove."""
    schema = schema or manifest_store.schema
    local = get_local_manifests(file_system, schema, max_file_size)

    try:
        stored = manifest_store.all()
    except StorageError as e:
        logger.warning("Could not read stored manifests (%s); treating store as empty", e)
        return RagFilesDiff(to_add=[local[p] for p in sorted(local)])

    return compare_manifests(local, stored)
