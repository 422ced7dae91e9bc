"""File utility functions."""

from __future__ import annotations

from pathlib import Path


def is_binary_file(path: Path) -> bool:
    """Check if file is binary by looking for null bytes."""
    try:
        with path.open("rb") as f:
            sample = f.read(2048)
        return b"\x00" in sample
    except OSError:
        return True


def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")
