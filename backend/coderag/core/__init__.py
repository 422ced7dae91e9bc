"""Core functionality for coderag."""

from .chunking import Chunker, LineWindowChunker, chunk_files, extract_metadata, make_chunker
from .embeddings import EmbeddingProvider, make_embedding_provider
from .models import (
    ChatMessage,
    ChunkMetadata,
    CodeChunk,
    Conversation,
    EmbeddingJob,
    FileRecord,
    JobPriority,
    JobStatus,
    Relevance,
    RetrievedChunk,
    SearchPage,
    SimilarityResult,
)

__all__ = [
    "ChatMessage",
    "Chunker",
    "ChunkMetadata",
    "CodeChunk",
    "Conversation",
    "EmbeddingJob",
    "EmbeddingProvider",
    "FileRecord",
    "JobPriority",
    "JobStatus",
    "LineWindowChunker",
    "Relevance",
    "RetrievedChunk",
    "SearchPage",
    "SimilarityResult",
    "chunk_files",
    "extract_metadata",
    "make_chunker",
    "make_embedding_provider",
]
