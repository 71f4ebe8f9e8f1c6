"""Detect and repair disagreement between manifests and vector rows.

A crash between the vector write and the manifest commit leaves rows
without a manifest (orphan embeddings). A lost vector write, or a table
rebuilt behind the manifest store's back, leaves manifests without rows
(orphan manifests).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from coderag.rag.manifests import ManifestStore
from coderag.rag.vector_store import VectorStore

logger = logging.getLogger(__name__)


@dataclass
class Orphans:
    orphan_embeddings: list[str] = field(default_factory=list)
    orphan_manifests: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.orphan_embeddings or self.orphan_manifests)


def find_orphans(vector_store: VectorStore, manifest_store: ManifestStore) -> Orphans:
    """Compare distinct row paths with manifest keys."""
    embedded = vector_store.list_relative_paths()
    manifested = set(manifest_store.keys())
    orphans = Orphans(
        orphan_embeddings=sorted(embedded - manifested),
        orphan_manifests=sorted(manifested - embedded),
    )
    if orphans:
        logger.info(
            "Found %d orphan embedding paths and %d orphan manifests",
            len(orphans.orphan_embeddings), len(orphans.orphan_manifests),
        )
    return orphans


def delete_orphan_manifests(manifest_store: ManifestStore, paths: Iterable[str]) -> int:
    """Drop manifests that have no rows so the diff re-adds those files."""
    paths = list(paths)
    if paths:
        manifest_store.delete_many(paths)
        logger.debug("Deleted orphan manifests: %s", paths)
    return len(paths)
