"""coderag CLI - main entry point.

Commands:
  index     Bring the workspace index up to date
  update    Apply a single file change
  query     Search the index
  status    Show index metadata
  watch     Keep the index updated as files change
  config    View and update workspace settings
  serve     Start the HTTP engine
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from rich.console import Console

from coderag import __version__

console = Console()
err_console = Console(stderr=True)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="coderag",
        description="coderag - incremental codebase indexing and semantic search",
    )
    parser.add_argument("--version", action="version", version=f"coderag {__version__}")
    parser.add_argument("-w", "--workspace", default=None, help="Workspace root (default: auto-detect)")
    parser.add_argument("--api-key", default=None, help="Embedding provider credential")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    # index
    subparsers.add_parser("index", help="Bring the workspace index up to date")

    # update
    update_parser = subparsers.add_parser("update", help="Apply a single file change")
    update_parser.add_argument("path", help="Workspace-relative file path")
    update_parser.add_argument(
        "--event", choices=["add", "update", "delete"], default="update", help="Kind of change",
    )

    # query
    query_parser = subparsers.add_parser("query", help="Search the index")
    query_parser.add_argument("text", help="Natural language query")
    query_parser.add_argument("-n", "--limit", type=int, default=10, help="Maximum results")
    query_parser.add_argument("--json", action="store_true", help="Print results as JSON")

    # status
    subparsers.add_parser("status", help="Show index metadata")

    # watch
    watch_parser = subparsers.add_parser("watch", help="Keep the index updated as files change")
    watch_parser.add_argument("--no-initial", action="store_true", help="Skip the initial index run")

    # config
    config_parser = subparsers.add_parser("config", help="View and update workspace settings")
    config_parser.add_argument(
        "action", choices=["show", "get", "set"], help="Action to perform"
    )
    config_parser.add_argument("key", nargs="?", help="Setting key (for get/set)")
    config_parser.add_argument("value", nargs="?", help="Setting value (for set)")

    # serve
    from coderag.engine.server import add_server_arguments

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP engine")
    add_server_arguments(serve_parser)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 1

    commands = {
        "index": cmd_index,
        "update": cmd_update,
        "query": cmd_query,
        "status": cmd_status,
        "watch": cmd_watch,
        "config": cmd_config,
        "serve": cmd_serve,
    }

    try:
        return commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130


def _workspace(args: argparse.Namespace) -> Path:
    from coderag.utils.paths import get_workspace_root

    if args.workspace:
        return Path(args.workspace).resolve()
    return get_workspace_root()


def _run_index(root: Path, api_key: str | None) -> int:
    from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn

    from coderag.rag.errors import RagError
    from coderag.rag.indexer import initialize_rag

    errors: list[Exception] = []

    async def run() -> int:
        with Progress(
            TextColumn("[bold]Indexing[/bold]"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("index", total=None)
            total = 0
            async for update in initialize_rag(root, credential=api_key, on_error=errors.append):
                progress.update(task, completed=update.progress, total=update.total)
                total = update.total
        return total

    try:
        total = asyncio.run(run())
    except (RagError, OSError) as e:
        err_console.print(f"[red]Index failed:[/red] {e}")
        return 1

    for error in errors:
        err_console.print(f"[yellow]warning:[/yellow] {error}")
    if total == 0:
        console.print("Index is up to date.")
    else:
        console.print(f"Processed {total} files ({len(errors)} errors).")
    return 0


def cmd_index(args: argparse.Namespace) -> int:
    """Bring the workspace index up to date."""
    return _run_index(_workspace(args), args.api_key)


def cmd_update(args: argparse.Namespace) -> int:
    """Apply a single file change."""
    from coderag.rag.errors import RagError
    from coderag.rag.indexer import update_rag

    root = _workspace(args)
    try:
        asyncio.run(update_rag(args.path, args.event, None, root, args.api_key))
    except (RagError, OSError) as e:
        err_console.print(f"[red]Update failed:[/red] {e}")
        return 1
    console.print(f"{args.event}: {args.path}")
    return 0


def cmd_query(args: argparse.Namespace) -> int:
    """Search the index."""
    from rich.syntax import Syntax

    from coderag.rag.errors import RagError
    from coderag.rag.search import query_rag

    root = _workspace(args)
    try:
        results = asyncio.run(query_rag(args.text, root, args.api_key, limit=args.limit))
    except (RagError, ValueError) as e:
        err_console.print(f"[red]Query failed:[/red] {e}")
        return 1

    if args.json:
        print(json.dumps([r.to_dict() for r in results], indent=2))
        return 0

    if not results:
        console.print("No results.")
        return 0

    for r in results:
        console.rule(f"{r.relative_path}:{r.start_line}-{r.end_line}  [dim]distance {r.distance:.4f}[/dim]")
        lexer = Syntax.guess_lexer(r.relative_path, code=r.content)
        console.print(Syntax(r.content, lexer, line_numbers=True, start_line=r.start_line))
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show index metadata."""
    from coderag.rag.errors import RagError
    from coderag.rag.indexer import get_rag_metadata

    root = _workspace(args)
    try:
        metadata = get_rag_metadata(root)
    except RagError as e:
        err_console.print(f"[red]Status failed:[/red] {e}")
        return 1

    print(json.dumps({"workspace": str(root), **metadata.to_dict()}, indent=2))
    return 0


def cmd_watch(args: argparse.Namespace) -> int:
    """Keep the index updated as files change."""
    from coderag.rag.watcher import run_watch_loop

    root = _workspace(args)
    if not args.no_initial:
        code = _run_index(root, args.api_key)
        if code != 0:
            return code

    console.print(f"Watching {root} (Ctrl+C to stop)")
    asyncio.run(run_watch_loop(
        root,
        args.api_key,
        on_update=lambda path, event: console.print(f"{event.value}: {path}"),
        on_error=lambda e: err_console.print(f"[yellow]warning:[/yellow] {e}"),
    ))
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """View and update workspace settings."""
    from dataclasses import replace

    from coderag.config import (
        DEFAULT_SETTINGS,
        coerce_value,
        load_json_file,
        load_settings,
        validate_settings,
    )
    from coderag.utils.paths import get_workspace_settings_path

    root = _workspace(args)
    action = args.action

    if action == "show":
        print(json.dumps(load_settings(root).to_dict(), indent=2))
        return 0

    if not args.key:
        print(f"Usage: coderag config {action} <key>{' <value>' if action == 'set' else ''}", file=sys.stderr)
        return 1
    if args.key not in DEFAULT_SETTINGS:
        print(
            f"Unknown key: {args.key}. "
            f"Allowed keys: {', '.join(sorted(DEFAULT_SETTINGS))}",
            file=sys.stderr,
        )
        return 1

    if action == "get":
        value = getattr(load_settings(root), args.key)
        print(value if value is not None else "")
        return 0

    if args.value is None:
        print("Usage: coderag config set <key> <value>", file=sys.stderr)
        return 1
    try:
        value = coerce_value(args.key, args.value)
    except ValueError as e:
        print(f"Invalid value for {args.key}: {e}", file=sys.stderr)
        return 1

    errors = validate_settings(replace(load_settings(root), **{args.key: value}))
    if errors:
        for err in errors:
            print(f"Validation error: {err}", file=sys.stderr)
        return 1

    settings_path = get_workspace_settings_path(root)
    data = load_json_file(settings_path)
    data[args.key] = value
    settings_path.parent.mkdir(parents=True, exist_ok=True)
    settings_path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    print(f"{args.key} = {value}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the HTTP engine."""
    from coderag.engine.server import serve

    serve(args)
    return 0


if __name__ == "__main__":
    sys.exit(main())
