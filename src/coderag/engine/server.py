"""Uvicorn startup for the coderag engine."""

from __future__ import annotations

import argparse
import os


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="coderag engine server")
    add_server_arguments(parser)
    return parser


def add_server_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8742, help="Bind port (default: 8742)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument(
        "--service",
        action="store_true",
        help="Enable standalone service mode (binds 0.0.0.0, enables CORS and auth)",
    )
    parser.add_argument(
        "--service-api-key", default=None, help="API key clients must send (service mode)",
    )
    parser.add_argument(
        "--cors-origins",
        default=None,
        help="Comma-separated CORS origins (service mode, default: *)",
    )


def serve(args: argparse.Namespace) -> None:
    """Run uvicorn with the options parsed by ``add_server_arguments``."""
    import uvicorn

    host = args.host
    if args.service and host == "127.0.0.1":
        host = "0.0.0.0"

    # Service config travels to the factory through the environment
    if args.service:
        os.environ["CODERAG_SERVICE_MODE"] = "1"
    if args.service_api_key:
        os.environ["CODERAG_SERVICE_API_KEY"] = args.service_api_key
    if args.cors_origins:
        os.environ["CODERAG_CORS_ORIGINS"] = args.cors_origins

    uvicorn.run(
        "coderag.engine.app:create_app",
        factory=True,
        host=host,
        port=args.port,
        reload=args.reload,
        log_level="info",
    )


def main() -> None:
    """Start the coderag engine server."""
    serve(build_parser().parse_args())


if __name__ == "__main__":
    main()
