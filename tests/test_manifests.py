"""Tests for the manifest store."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from coderag.rag.manifests import ManifestStore, build_manifest, compute_content_hash
from coderag.rag.schema import IndexSchema, Manifest


class TestContentHash:
    def test_sha256_hex(self):
        assert compute_content_hash(b"") == (
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )

    def test_build_manifest(self):
        m = build_manifest("src/a.ts", b"x", rag_version=3)
        assert m.relative_path == "src/a.ts"
        assert m.rag_version == 3
        assert m.content_hash == compute_content_hash(b"x")


class TestManifestStore:
    def test_open_creates_metadata(self, manifest_store: ManifestStore, schema: IndexSchema):
        metadata = manifest_store.get_metadata()
        assert metadata is not None
        assert metadata.schema_version == schema.schema_version
        assert metadata.rag_version == schema.rag_version
        assert metadata.indexed_files == 0
        assert metadata.last_indexed_at is None

    def test_put_get_roundtrip(self, manifest_store: ManifestStore):
        m = build_manifest("src/a.ts", b"a", 3)
        manifest_store.put(m)
        loaded = manifest_store.get("src/a.ts")
        assert loaded is not None
        assert loaded.content_hash == m.content_hash
        assert loaded.indexed_at == m.indexed_at

    def test_put_replaces(self, manifest_store: ManifestStore):
        manifest_store.put(build_manifest("a.ts", b"1", 3))
        manifest_store.put(build_manifest("a.ts", b"2", 3))
        assert manifest_store.count() == 1
        assert manifest_store.get("a.ts").content_hash == compute_content_hash(b"2")

    def test_get_missing(self, manifest_store: ManifestStore):
        assert manifest_store.get("nope.ts") is None

    def test_bulk_operations(self, manifest_store: ManifestStore):
        manifest_store.put_many([build_manifest(p, p.encode(), 3) for p in ("b.ts", "a.ts", "c.ts")])
        assert manifest_store.keys() == ["a.ts", "b.ts", "c.ts"]
        manifest_store.delete_many(["a.ts", "c.ts", "missing.ts"])
        assert manifest_store.keys() == ["b.ts"]
        manifest_store.delete("b.ts")
        assert manifest_store.count() == 0

    def test_all_returns_mapping(self, manifest_store: ManifestStore):
        manifest_store.put(build_manifest("x.py", b"x", 3))
        assert isinstance(manifest_store.all()["x.py"], Manifest)

    def test_sync_metadata_counts_manifests(self, manifest_store: ManifestStore):
        initialized = manifest_store.get_metadata().initialized_at
        manifest_store.put_many([build_manifest(p, b"x", 3) for p in ("a.ts", "b.ts")])
        metadata = manifest_store.sync_metadata()
        assert metadata.indexed_files == 2
        assert metadata.last_indexed_at is not None
        assert metadata.initialized_at == initialized
        assert manifest_store.get_metadata().indexed_files == 2

    def test_reset_metadata(self, manifest_store: ManifestStore):
        manifest_store.put(build_manifest("a.ts", b"x", 3))
        manifest_store.sync_metadata()
        metadata = manifest_store.reset_metadata()
        assert metadata.indexed_files == 0
        assert metadata.last_indexed_at is None

    def test_reopen_keeps_manifests(self, tmp_path: Path, schema: IndexSchema):
        path = tmp_path / "m" / "index.sqlite3"
        store = ManifestStore(path, schema)
        store.open()
        store.put(build_manifest("a.ts", b"x", 3))

        reopened = ManifestStore(path, schema)
        reopened.open()
        assert reopened.keys() == ["a.ts"]

    def test_schema_version_change_resets(self, tmp_path: Path):
        path = tmp_path / "m" / "index.sqlite3"
        store = ManifestStore(path, IndexSchema(embedding_dim=8, schema_version=1))
        store.open()
        store.put(build_manifest("a.ts", b"x", 3))

        upgraded = ManifestStore(path, IndexSchema(embedding_dim=8, schema_version=2))
        upgraded.open()
        assert upgraded.count() == 0
        assert upgraded.get_metadata().schema_version == 2

    def test_corrupt_metadata_resets(self, tmp_path: Path, schema: IndexSchema):
        path = tmp_path / "m" / "index.sqlite3"
        store = ManifestStore(path, schema)
        store.open()
        store.put(build_manifest("a.ts", b"x", 3))
        with sqlite3.connect(path) as conn:
            conn.execute("UPDATE meta SET value = 'not json'")

        reopened = ManifestStore(path, schema)
        reopened.open()
        assert reopened.count() == 0
        assert reopened.get_metadata() is not None
