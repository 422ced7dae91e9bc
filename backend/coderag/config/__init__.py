"""Configuration management for coderag."""

from .manager import (
    DEFAULT_CONFIG,
    DEFAULT_INCLUDE_PATTERNS,
    DEFAULT_EXCLUDE_PATTERNS,
    VALID_VECTOR_DIMENSIONS,
    load_config,
    validate_config,
    expand_pattern,
)

__all__ = [
    "DEFAULT_CONFIG",
    "DEFAULT_INCLUDE_PATTERNS",
    "DEFAULT_EXCLUDE_PATTERNS",
    "VALID_VECTOR_DIMENSIONS",
    "load_config",
    "validate_config",
    "expand_pattern",
]
