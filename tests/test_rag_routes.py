"""Tests for the indexing and search API routes."""

from __future__ import annotations

import json
from contextlib import aclosing
from pathlib import Path
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from conftest import FakeEmbeddingProvider
from coderag.engine.app import create_app
from coderag.engine.models.requests import RagIndexRequest
from coderag.engine.routes import rag as rag_routes


def parse_sse(body: str) -> list[tuple[str, dict]]:
    """Split an event stream into (event, data) pairs."""
    events = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


@pytest.fixture
def client(settings, provider) -> TestClient:
    return TestClient(create_app(settings=settings, embedding_provider=provider))


def index(client: TestClient, workspace: Path) -> list[tuple[str, dict]]:
    response = client.post("/rag/index", json={"workspace_root": str(workspace)})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    return parse_sse(response.text)


class TestIndexRoute:
    def test_streams_progress_then_done(self, client, workspace):
        events = index(client, workspace)

        progress = [data for kind, data in events if kind == "progress"]
        assert [p["progress"] for p in progress] == [1, 2, 3, 4, 5]
        assert all(p["total"] == 5 for p in progress)
        assert events[-1] == ("done", {"success": True})

    def test_second_run_reports_nothing_to_do(self, client, workspace):
        index(client, workspace)

        events = index(client, workspace)

        assert events == [("progress", {"progress": 0, "total": 0}), ("done", {"success": True})]

    def test_file_errors_are_streamed(self, client, provider, workspace):
        provider.fail_paths = {"src/b.ts"}

        events = index(client, workspace)

        errors = [data["message"] for kind, data in events if kind == "error"]
        assert any("src/b.ts" in message for message in errors)
        assert events[-1] == ("done", {"success": True})

    def test_missing_workspace(self, client, tmp_path):
        events = index(client, tmp_path / "nope")

        assert events[0][0] == "error"
        assert "Workspace not found" in events[0][1]["message"]
        assert events[-1] == ("done", {"success": False})

    @pytest.mark.asyncio
    async def test_disconnect_closes_run_while_locked(self, monkeypatch, settings, provider, workspace):
        root = workspace.resolve()
        lock = rag_routes.workspace_lock(root)
        closed: list[bool] = []
        run = rag_routes.initialize_rag

        async def tracked(*args, **kwargs):
            try:
                async with aclosing(run(*args, **kwargs)) as updates:
                    async for update in updates:
                        yield update
            finally:
                closed.append(lock.locked())

        monkeypatch.setattr(rag_routes, "initialize_rag", tracked)
        request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(
            settings=settings, embedding_provider=provider,
        )))

        response = await rag_routes.index_endpoint(RagIndexRequest(workspace_root=str(root)), request)
        stream = response.body_iterator
        first = await stream.__anext__()
        await stream.aclose()

        assert first.startswith("event: progress")
        assert closed == [True]
        assert not lock.locked()


class TestUpdateRoute:
    def test_add_file(self, client, workspace):
        index(client, workspace)
        (workspace / "src" / "c.ts").write_text("export const c = 3;\n")

        response = client.post("/rag/update", json={
            "workspace_root": str(workspace),
            "relative_path": "src/c.ts",
            "event": "add",
        })

        assert response.status_code == 200
        assert response.json() == {
            "success": True, "relative_path": "src/c.ts", "event": "add", "error": None,
        }
        metadata = client.get("/rag/metadata", params={"workspace_root": str(workspace)}).json()
        assert metadata["indexed_files"] == 6

    def test_invalid_event_rejected(self, client, workspace):
        response = client.post("/rag/update", json={
            "workspace_root": str(workspace),
            "relative_path": "src/a.ts",
            "event": "rename",
        })
        assert response.status_code == 422

    def test_provider_failure(self, client, provider, workspace):
        provider.fail_all = True

        response = client.post("/rag/update", json={
            "workspace_root": str(workspace),
            "relative_path": "src/a.ts",
            "event": "update",
        })

        data = response.json()
        assert data["success"] is False
        assert data["error"]

    def test_missing_workspace(self, client, tmp_path):
        response = client.post("/rag/update", json={
            "workspace_root": str(tmp_path / "nope"),
            "relative_path": "src/a.ts",
            "event": "delete",
        })
        assert response.json()["success"] is False


class TestQueryRoute:
    def test_query(self, client, workspace):
        index(client, workspace)

        response = client.post("/rag/query", json={
            "workspace_root": str(workspace), "query": "styles", "limit": 3,
        })

        data = response.json()
        assert data["success"] is True
        assert data["query"] == "styles"
        assert len(data["results"]) == 3
        distances = [r["distance"] for r in data["results"]]
        assert distances == sorted(distances)
        assert {"relative_path", "content", "start_line", "end_line"} <= set(data["results"][0])

    def test_unindexed_workspace(self, client, workspace):
        response = client.post("/rag/query", json={"workspace_root": str(workspace), "query": "x"})
        assert response.json() == {"success": True, "query": "x", "results": [], "error": None}

    @pytest.mark.parametrize("body", [{"query": ""}, {"query": "x", "limit": 0}, {"query": "x", "limit": 101}])
    def test_validation(self, client, workspace, body):
        response = client.post("/rag/query", json={"workspace_root": str(workspace), **body})
        assert response.status_code == 422

    def test_dimension_mismatch(self, settings, workspace):
        index(TestClient(create_app(settings=settings, embedding_provider=FakeEmbeddingProvider())), workspace)
        client = TestClient(create_app(settings=settings, embedding_provider=FakeEmbeddingProvider(dimension=4)))

        data = client.post("/rag/query", json={"workspace_root": str(workspace), "query": "x"}).json()

        assert data["success"] is False
        assert "dimensions" in data["error"]


class TestMetadataRoute:
    def test_after_index(self, client, workspace):
        index(client, workspace)

        data = client.get("/rag/metadata", params={"workspace_root": str(workspace)}).json()

        assert data["success"] is True
        assert data["indexed_files"] == 5
        assert data["rag_version"] == 3
        assert data["last_indexed_at"] is not None

    def test_missing_workspace(self, client, tmp_path):
        data = client.get("/rag/metadata", params={"workspace_root": str(tmp_path / "nope")}).json()
        assert data["success"] is False


class TestServiceMode:
    @pytest.fixture
    def service_client(self, monkeypatch, settings, provider) -> TestClient:
        monkeypatch.setenv("CODERAG_SERVICE_MODE", "1")
        monkeypatch.setenv("CODERAG_SERVICE_API_KEY", "secret")
        return TestClient(create_app(settings=settings, embedding_provider=provider))

    def test_health_is_open(self, service_client):
        assert service_client.get("/health").status_code == 200

    def test_requires_key(self, service_client, workspace):
        response = service_client.get("/rag/metadata", params={"workspace_root": str(workspace)})
        assert response.status_code == 401

    def test_accepts_key(self, service_client, workspace):
        response = service_client.get(
            "/rag/metadata",
            params={"workspace_root": str(workspace)},
            headers={"X-API-Key": "secret"},
        )
        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_accepts_bearer_token(self, service_client, workspace):
        response = service_client.get(
            "/rag/metadata",
            params={"workspace_root": str(workspace)},
            headers={"Authorization": "Bearer secret"},
        )
        assert response.status_code == 200

    def test_rejects_wrong_key(self, service_client, workspace):
        response = service_client.post(
            "/rag/query",
            json={"workspace_root": str(workspace), "query": "x"},
            headers={"X-API-Key": "guess"},
        )
        assert response.status_code == 401
        assert response.json() == {"detail": "Invalid or missing API key"}
