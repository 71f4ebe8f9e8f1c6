"""Line-based chunking of source files.

Chunks are contiguous ranges of ``chunk_size`` lines. Line numbers are
1-based and inclusive. Whitespace-only chunks are dropped and the remaining
chunk indices are renumbered densely.
"""

from __future__ import annotations

from pathlib import PurePosixPath

from coderag.rag.allowlist import normalize_relative_path
from coderag.rag.filesystem import FileSystem
from coderag.rag.schema import Chunk

DEFAULT_CHUNK_SIZE = 50

FRONTEND_EXTENSIONS = {".tsx", ".jsx", ".vue", ".svelte", ".astro", ".html", ".htm"}
STYLING_EXTENSIONS = {".css", ".scss", ".sass", ".less", ".styl"}
DOCUMENTATION_EXTENSIONS = {".md", ".mdx"}


def chunk_text(relative_path: str, text: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[Chunk]:
    """Split file text into line-range chunks.

    Args:
        relative_path: Workspace-relative path stored on every chunk
        text: Decoded file content
        chunk_size: Lines per chunk; the last chunk may be shorter

    Returns:
        Chunks with dense 0-based ``chunk_index`` and a shared ``total_chunks``
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    relative_path = normalize_relative_path(relative_path)
    # only "\n" ends a line; form feeds and other separators stay in the line text
    lines = text.split("\n")
    if text.endswith("\n"):
        lines.pop()

    ranges: list[tuple[int, int, str]] = []
    for start in range(0, len(lines), chunk_size):
        window = lines[start:start + chunk_size]
        content = "\n".join(window)
        if not content.strip():
            continue
        ranges.append((start + 1, start + len(window), content))

    total = len(ranges)
    return [
        Chunk(
            relative_path=relative_path,
            chunk_index=index,
            total_chunks=total,
            start_line=start_line,
            end_line=end_line,
            content=content,
        )
        for index, (start_line, end_line, content) in enumerate(ranges)
    ]


def chunk_file(
    file_system: FileSystem,
    relative_path: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> list[Chunk]:
    """Read a file through the workspace file system and chunk it."""
    return chunk_text(relative_path, file_system.read_text(relative_path), chunk_size)


def describe_chunk(chunk: Chunk) -> str:
    """Text sent to the embedding provider for a chunk.

    A short file-kind header followed by the code block. The stored row keeps
    the raw chunk content.
    """
    path = PurePosixPath(chunk.relative_path)
    extension = path.suffix.lower()
    description = f"A {extension} file with the name {path.name} from the file {chunk.relative_path}."
    if extension in FRONTEND_EXTENSIONS:
        description = f"FRONTEND FILE \n{description}"
    elif extension in STYLING_EXTENSIONS:
        description = f"STYLING FILE \n{description}"
    elif extension in DOCUMENTATION_EXTENSIONS:
        description = f"DOCUMENTATION FILE \n{description}"
    return f"{description}\n\nCode:\n---\n{chunk.content}\n---"
