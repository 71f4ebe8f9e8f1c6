"""HTTP service exposing the codebase index."""
