"""Text formatting helpers."""

from __future__ import annotations


def format_size(size_bytes: int) -> str:
    """Human-readable size: ``512B``, ``12.5KB``, ``1.20MB``."""
    if size_bytes < 1024:
        return f"{size_bytes}B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f}KB"
    return f"{size_bytes / (1024 * 1024):.2f}MB"


def join_names(names: list[str]) -> str:
    return ", ".join(names) if names else "-"
