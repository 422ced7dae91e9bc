"""Utility functions for coderag."""

from .file_utils import is_binary_file, read_text
from .log import setup_logging

__all__ = [
    "is_binary_file",
    "read_text",
    "setup_logging",
]
