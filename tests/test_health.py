"""Tests for the health endpoint."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from coderag.engine.app import create_app


@pytest.fixture
def client() -> TestClient:
    app = create_app()
    return TestClient(app)


def test_health_returns_ok(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert "version" in data
    assert data["capabilities"][:2] == ["index", "query"]


def test_health_version_matches(client: TestClient) -> None:
    from coderag import __version__
    response = client.get("/health")
    assert response.json()["version"] == __version__


def test_health_reports_watch_support(client: TestClient) -> None:
    assert "watch" in client.get("/health").json()["capabilities"]
