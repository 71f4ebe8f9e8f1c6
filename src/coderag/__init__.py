"""coderag - incremental codebase indexing and semantic retrieval."""

__version__ = "0.1.0"
