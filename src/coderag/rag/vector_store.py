"""LanceDB adapter for the embedding table.

Wraps table lifecycle (create, validate, drop-and-rebuild on schema drift),
batched inserts, per-file predicate deletes and k-NN search.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import lancedb
import pyarrow as pa

from coderag.rag.errors import DimensionMismatchError, SchemaDriftError, StorageError
from coderag.rag.schema import EmbeddingRecord, IndexSchema, SearchResult

if TYPE_CHECKING:
    from coderag.rag.manifests import ManifestStore

logger = logging.getLogger(__name__)


def path_predicate(relative_path: str) -> str:
    """Equality filter on relative_path with single quotes escaped."""
    escaped = relative_path.replace("'", "''")
    return f"relative_path = '{escaped}'"


class VectorStore:
    """Handle on one workspace's embedding table."""

    def __init__(self, db_path: Path | str, schema: IndexSchema | None = None) -> None:
        self.db_path = Path(db_path)
        self.schema = schema or IndexSchema()
        self._db: Any = None
        self._table: Any = None

    # Lifecycle

    def open(self) -> VectorStore:
        """Connect to the database and open the table if it exists."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._db = lancedb.connect(str(self.db_path))
            if self.schema.table_name in self._db.list_tables().tables:
                self._table = self._db.open_table(self.schema.table_name)
        except Exception as e:
            raise StorageError(f"Cannot open vector store {self.db_path}: {e}") from e
        return self

    @property
    def has_table(self) -> bool:
        return self._table is not None

    @property
    def table(self) -> Any:
        if self._table is None:
            raise StorageError("Table not initialized. Please ensure the codebase is indexed first.")
        return self._table

    def _create_table(self) -> None:
        self._table = self._db.create_table(
            self.schema.table_name,
            schema=self.schema.arrow_schema(),
            mode="overwrite",
        )

    def validate(self) -> None:
        """Raise SchemaDriftError if the table does not match the schema."""
        if self._table is None:
            return

        field_type = self._table.schema.field("embedding").type
        if not pa.types.is_fixed_size_list(field_type) or field_type.list_size != self.schema.embedding_dim:
            raise SchemaDriftError(
                f"Embedding column is {field_type}, expected {self.schema.embedding_dim} floats"
            )

        if self._table.count_rows() == 0:
            return
        sample = self._table.search().select(["rag_version", "embedding"]).limit(1).to_list()
        if not sample:
            return

        row = sample[0]
        if row.get("rag_version") != self.schema.rag_version:
            raise SchemaDriftError(
                f"Table has rag_version {row.get('rag_version')}, expected {self.schema.rag_version}"
            )
        dim = len(row.get("embedding") or [])
        if dim != self.schema.embedding_dim:
            raise SchemaDriftError(
                f"Table has {dim}-dimensional embeddings, expected {self.schema.embedding_dim}"
            )

    def ensure_schema(self, manifest_store: ManifestStore) -> bool:
        """Create or validate the table; rebuild it on drift.

        A rebuild invalidates every completion claim, so manifests and
        metadata are wiped together with the vectors. Returns True when a
        reset happened.
        """
        if self._db is None:
            self.open()

        if self._table is None:
            try:
                self._create_table()
            except Exception as e:
                raise StorageError(f"Cannot create table {self.schema.table_name}: {e}") from e
            return False

        try:
            self.validate()
            return False
        except SchemaDriftError as e:
            logger.warning("Schema drift in %s: %s. Rebuilding index.", self.db_path, e)
        except Exception as e:
            logger.warning("Could not validate %s (%s). Rebuilding index.", self.db_path, e)

        try:
            self._db.drop_table(self.schema.table_name)
            self._create_table()
        except Exception as e:
            raise StorageError(f"Cannot rebuild table {self.schema.table_name}: {e}") from e

        manifest_store.clear()
        manifest_store.reset_metadata()
        return True

    # Writes

    def insert_batch(self, rows: list[EmbeddingRecord]) -> None:
        """Insert rows as one columnar batch."""
        if not rows:
            return
        for row in rows:
            if len(row.embedding) != self.schema.embedding_dim:
                raise DimensionMismatchError(len(row.embedding), self.schema.embedding_dim)

        batch = pa.Table.from_pylist(
            [row.to_dict() for row in rows],
            schema=self.schema.arrow_schema(),
        )
        try:
            self.table.add(batch)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to insert {len(rows)} rows: {e}") from e

    def delete_by_path(self, relative_path: str) -> None:
        """Delete every row of one file. Missing paths are a no-op."""
        try:
            self.table.delete(path_predicate(relative_path))
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete rows for {relative_path}: {e}") from e

    # Reads

    def count_rows(self, relative_path: str | None = None) -> int:
        if self._table is None:
            return 0
        if relative_path is None:
            return self._table.count_rows()
        return self._table.count_rows(path_predicate(relative_path))

    def _scan(self, columns: list[str], where: str | None = None) -> list[dict[str, Any]]:
        total = self.count_rows()
        if total == 0:
            return []
        query = self.table.search().select(columns)
        if where:
            query = query.where(where)
        return query.limit(total).to_list()

    def rows_for_path(self, relative_path: str) -> list[dict[str, Any]]:
        """All rows of one file, ordered by chunk_index."""
        rows = self._scan(
            ["relative_path", "chunk_index", "total_chunks", "content",
             "start_line", "end_line", "rag_version", "embedding"],
            where=path_predicate(relative_path),
        )
        return sorted(rows, key=lambda r: r["chunk_index"])

    def list_relative_paths(self) -> set[str]:
        """Distinct relative paths that have at least one row."""
        return {
            row["relative_path"]
            for row in self._scan(["relative_path"])
            if row["relative_path"]
        }

    def stats(self) -> dict[str, Any]:
        """Distinct indexed files and newest indexed_at, derived from rows."""
        files: set[str] = set()
        newest: datetime | None = None
        for row in self._scan(["relative_path", "indexed_at"]):
            if not row["relative_path"]:
                continue
            files.add(row["relative_path"])
            indexed_at = row["indexed_at"]
            if indexed_at is not None and (newest is None or indexed_at > newest):
                newest = indexed_at
        return {"indexed_files": len(files), "last_indexed_at": newest}

    def search(self, query_vector: list[float], limit: int = 10) -> list[SearchResult]:
        """k nearest rows, ascending by distance."""
        if len(query_vector) != self.schema.embedding_dim:
            raise DimensionMismatchError(len(query_vector), self.schema.embedding_dim)
        if self.count_rows() == 0:
            return []

        try:
            rows = (
                self.table.search(list(query_vector), vector_column_name="embedding")
                .limit(limit)
                .to_list()
            )
        except Exception as e:
            raise StorageError(f"Vector search failed: {e}") from e

        results = [
            SearchResult(
                relative_path=r["relative_path"],
                absolute_path=r["absolute_path"],
                content=r["content"],
                start_line=r["start_line"],
                end_line=r["end_line"],
                chunk_index=r["chunk_index"],
                distance=float(r["_distance"]),
            )
            for r in rows
        ]
        results.sort(key=lambda r: (r.distance, r.relative_path, r.chunk_index))
        return results
