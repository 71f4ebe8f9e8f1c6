"""Which repository paths are eligible for indexing."""

from __future__ import annotations

from pathlib import PurePosixPath


ALLOWED_EXTENSIONS: frozenset[str] = frozenset({
    # web / frontend
    "js", "jsx", "mjs", "cjs", "ts", "tsx", "mts", "cts",
    "vue", "svelte", "astro", "html", "htm",
    "css", "scss", "sass", "less", "styl",
    # backend / systems
    "py", "rb", "php", "go", "rs", "java", "kt", "kts", "scala", "swift",
    "c", "h", "cc", "cpp", "hpp", "cs", "m", "mm", "dart", "ex", "exs",
    "lua", "sh", "bash", "zsh", "sql", "graphql", "gql", "proto",
    # config / docs
    "json", "jsonc", "yaml", "yml", "toml", "xml", "ini", "md", "mdx",
})

ALLOWED_FILENAMES: frozenset[str] = frozenset({
    "Dockerfile",
    "Makefile",
    "Procfile",
    "Gemfile",
    ".eslintrc",
    ".prettierrc",
    ".babelrc",
    ".stylelintrc",
    ".postcssrc",
    ".swcrc",
    ".browserslistrc",
    ".editorconfig",
})


def normalize_relative_path(path: str) -> str:
    """Forward-slash, workspace-relative form used as the manifest key."""
    normalized = path.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized.lstrip("/")


def is_allowed(path: str) -> bool:
    """Return True if the file at ``path`` may be indexed."""
    name = PurePosixPath(normalize_relative_path(path)).name
    if not name:
        return False
    if name in ALLOWED_FILENAMES:
        return True
    if "." not in name.lstrip("."):
        return False
    extension = name.rsplit(".", 1)[1].lower()
    return extension in ALLOWED_EXTENSIONS


def extension_glob_pattern() -> str:
    """Brace glob matching every allowed extension, e.g. ``**/*.{js,ts}``."""
    return "**/*.{" + ",".join(sorted(ALLOWED_EXTENSIONS)) + "}"


def filename_glob_pattern() -> str:
    """Brace glob matching every allowed exact filename."""
    return "**/{" + ",".join(sorted(ALLOWED_FILENAMES)) + "}"
