"""Ingestion and background embedding."""

from .ingest import IngestSummary, ingest_directory, ingest_files, iter_files, load_directory
from .pipeline import EmbeddingPipeline, chunk_payload, make_pipeline

__all__ = [
    "EmbeddingPipeline",
    "IngestSummary",
    "chunk_payload",
    "ingest_directory",
    "ingest_files",
    "iter_files",
    "load_directory",
    "make_pipeline",
]
