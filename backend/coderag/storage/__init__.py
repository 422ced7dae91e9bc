"""Vector index backends (Qdrant only)."""

from .base import VectorHit, VectorIndex, VectorPoint
from .qdrant import QdrantVectorIndex, make_vector_index

__all__ = [
    "VectorHit",
    "VectorIndex",
    "VectorPoint",
    "QdrantVectorIndex",
    "make_vector_index",
]
