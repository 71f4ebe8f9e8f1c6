"""Codebase index: manifests, vector table, diffing, embedding and search."""
