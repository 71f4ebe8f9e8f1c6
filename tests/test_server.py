"""Tests for the engine server entry point."""

from __future__ import annotations

import os
from unittest.mock import patch

from coderag.engine.server import build_parser, serve


def test_defaults():
    args = build_parser().parse_args([])
    assert args.host == "127.0.0.1"
    assert args.port == 8742
    assert args.service is False


def test_serve_runs_factory():
    args = build_parser().parse_args(["--port", "9000"])

    with patch("uvicorn.run") as run:
        serve(args)

    run.assert_called_once()
    assert run.call_args.args == ("coderag.engine.app:create_app",)
    assert run.call_args.kwargs["factory"] is True
    assert run.call_args.kwargs["port"] == 9000
    assert run.call_args.kwargs["host"] == "127.0.0.1"


def test_service_mode(monkeypatch):
    for name in ("CODERAG_SERVICE_MODE", "CODERAG_SERVICE_API_KEY", "CODERAG_CORS_ORIGINS"):
        monkeypatch.setenv(name, "")
    args = build_parser().parse_args([
        "--service", "--service-api-key", "secret", "--cors-origins", "https://a.example",
    ])

    with patch("uvicorn.run") as run:
        serve(args)

    assert run.call_args.kwargs["host"] == "0.0.0.0"
    assert os.environ["CODERAG_SERVICE_MODE"] == "1"
    assert os.environ["CODERAG_SERVICE_API_KEY"] == "secret"
    assert os.environ["CODERAG_CORS_ORIGINS"] == "https://a.example"
