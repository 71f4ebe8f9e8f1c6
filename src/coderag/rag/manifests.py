"""Durable per-file manifests and index metadata.

Manifests live in a small SQLite database next to the vector table:

    manifests(relative_path PRIMARY KEY, content_hash, rag_version, indexed_at)
    meta(key PRIMARY KEY, value)  -- JSON; the singleton record is under "schema"

A manifest is written only after the file's vectors are durably stored, so
its presence is the "this file is indexed" claim the diff relies on.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from coderag.rag.errors import StorageError
from coderag.rag.schema import METADATA_KEY, IndexSchema, Manifest, RagMetadata, utc_now

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS manifests (
    relative_path TEXT PRIMARY KEY,
    content_hash TEXT NOT NULL,
    rag_version INTEGER NOT NULL,
    indexed_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def compute_content_hash(data: bytes) -> str:
    """SHA256 hex digest of raw file bytes."""
    return hashlib.sha256(data).hexdigest()


def build_manifest(relative_path: str, data: bytes, rag_version: int) -> Manifest:
    return Manifest(
        relative_path=relative_path,
        content_hash=compute_content_hash(data),
        rag_version=rag_version,
    )


class ManifestStore:
    """SQLite-backed manifest and metadata store for one workspace."""

    def __init__(self, path: Path | str, schema: IndexSchema | None = None) -> None:
        self.path = Path(path)
        self.schema = schema or IndexSchema()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        try:
            conn = sqlite3.connect(self.path)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open manifest store {self.path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"Manifest store error: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def open(self) -> None:
        """Create tables and reset everything if the stored schema version differs."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.executescript(SCHEMA)

        try:
            metadata = self.get_metadata()
        except (StorageError, KeyError, ValueError) as e:
            logger.warning("Unreadable index metadata in %s (%s); resetting", self.path, e)
            metadata = None

        if metadata is None or metadata.schema_version != self.schema.schema_version:
            if metadata is not None:
                logger.info(
                    "Manifest schema version changed (%s -> %s); resetting %s",
                    metadata.schema_version, self.schema.schema_version, self.path,
                )
            self.reset()

    def reset(self) -> None:
        """Drop every manifest and write fresh metadata."""
        with self.connection() as conn:
            conn.execute("DELETE FROM manifests")
            conn.execute("DELETE FROM meta")
        self.put_metadata(RagMetadata(
            rag_version=self.schema.rag_version,
            schema_version=self.schema.schema_version,
            initialized_at=utc_now(),
        ))

    # Manifests

    def get(self, relative_path: str) -> Manifest | None:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM manifests WHERE relative_path = ?", (relative_path,)
            ).fetchone()
        return _row_to_manifest(row) if row else None

    def put(self, manifest: Manifest) -> None:
        with self.connection() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO manifests
                   (relative_path, content_hash, rag_version, indexed_at)
                   VALUES (?, ?, ?, ?)""",
                (
                    manifest.relative_path,
                    manifest.content_hash,
                    manifest.rag_version,
                    manifest.indexed_at.isoformat(),
                ),
            )

    def put_many(self, manifests: Iterable[Manifest]) -> None:
        with self.connection() as conn:
            conn.executemany(
                """INSERT OR REPLACE INTO manifests
                   (relative_path, content_hash, rag_version, indexed_at)
                   VALUES (?, ?, ?, ?)""",
                [
                    (m.relative_path, m.content_hash, m.rag_version, m.indexed_at.isoformat())
                    for m in manifests
                ],
            )

    def delete(self, relative_path: str) -> None:
        with self.connection() as conn:
            conn.execute("DELETE FROM manifests WHERE relative_path = ?", (relative_path,))

    def delete_many(self, relative_paths: Iterable[str]) -> None:
        with self.connection() as conn:
            conn.executemany(
                "DELETE FROM manifests WHERE relative_path = ?",
                [(p,) for p in relative_paths],
            )

    def all(self) -> dict[str, Manifest]:
        with self.connection() as conn:
            rows = conn.execute("SELECT * FROM manifests ORDER BY relative_path").fetchall()
        return {row["relative_path"]: _row_to_manifest(row) for row in rows}

    def keys(self) -> list[str]:
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT relative_path FROM manifests ORDER BY relative_path"
            ).fetchall()
        return [row["relative_path"] for row in rows]

    def count(self) -> int:
        with self.connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM manifests").fetchone()[0]

    def clear(self) -> None:
        with self.connection() as conn:
            conn.execute("DELETE FROM manifests")

    # Metadata

    def get_metadata(self) -> RagMetadata | None:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT value FROM meta WHERE key = ?", (METADATA_KEY,)
            ).fetchone()
        return RagMetadata.from_dict(json.loads(row["value"])) if row else None

    def put_metadata(self, metadata: RagMetadata) -> None:
        with self.connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
                (METADATA_KEY, json.dumps(metadata.to_dict())),
            )

    def reset_metadata(self) -> RagMetadata:
        """Mark the index empty, keeping schema_version and initialized_at."""
        existing = self.get_metadata()
        metadata = RagMetadata(
            rag_version=self.schema.rag_version,
            schema_version=existing.schema_version if existing else self.schema.schema_version,
            initialized_at=existing.initialized_at if existing else utc_now(),
        )
        self.put_metadata(metadata)
        return metadata

    def sync_metadata(self, last_indexed_at: datetime | None = None) -> RagMetadata:
        """Recount live manifests and stamp the index as refreshed."""
        existing = self.get_metadata()
        metadata = RagMetadata(
            rag_version=self.schema.rag_version,
            schema_version=existing.schema_version if existing else self.schema.schema_version,
            initialized_at=existing.initialized_at if existing else utc_now(),
            last_indexed_at=last_indexed_at or utc_now(),
            indexed_files=self.count(),
        )
        self.put_metadata(metadata)
        return metadata


def _row_to_manifest(row: sqlite3.Row) -> Manifest:
    return Manifest(
        relative_path=row["relative_path"],
        content_hash=row["content_hash"],
        rag_version=int(row["rag_version"]),
        indexed_at=datetime.fromisoformat(row["indexed_at"]),
    )
