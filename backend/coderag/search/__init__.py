"""Lexical, vector and hybrid search."""

from .engine import SearchEngine, validate_search_request, validate_vector_request, validate_weights
from .highlight import generate_highlight, truncate_content
from .lexical import FIELD_WEIGHTS, LexicalIndex

__all__ = [
    "FIELD_WEIGHTS",
    "LexicalIndex",
    "SearchEngine",
    "generate_highlight",
    "truncate_content",
    "validate_search_request",
    "validate_vector_request",
    "validate_weights",
]
