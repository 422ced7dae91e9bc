"""Weighted multi-field BM25 index over stored chunks."""

from __future__ import annotations

import logging
import re
import threading
from typing import Callable, Dict, List, Optional, Tuple

import bm25s
import numpy as np

from ..core.errors import LexicalIndexMissingError
from ..core.models import CodeChunk, normalize_language

logger = logging.getLogger(__name__)

# Relative weight of each field in the composite score.
FIELD_WEIGHTS: Dict[str, float] = {
    "content": 10.0,
    "functions": 8.0,
    "classes": 8.0,
    "file_path": 5.0,
    "file_name": 5.0,
    "imports": 2.0,
}

_FIELD_TEXT: Dict[str, Callable[[CodeChunk], str]] = {
    "content": lambda c: c.content,
    "functions": lambda c: " ".join(c.metadata.functions),
    "classes": lambda c: " ".join(c.metadata.classes),
    "file_path": lambda c: c.file_path,
    "file_name": lambda c: c.file_name,
    "imports": lambda c: " ".join(c.imports),
}


def tokenize_query(query: str) -> List[str]:
    tokens = bm25s.tokenize([query], stopwords=None, return_ids=False, show_progress=False)
    return list(tokens[0]) if tokens else []


class _FieldIndex:
    """BM25 index over one field of every chunk."""

    def __init__(self, texts: List[str]):
        tokens = bm25s.tokenize(texts, stopwords=None, show_progress=False)
        self.vocab = tokens.vocab
        self.retriever: Optional[bm25s.BM25] = None
        if any(token for token in self.vocab):
            self.retriever = bm25s.BM25()
            self.retriever.index(tokens, show_progress=False)

    def scores(self, terms: List[str]) -> Optional[np.ndarray]:
        known = [t for t in terms if t in self.vocab]
        if self.retriever is None or not known:
            return None
        return self.retriever.get_scores(known)


class _CorpusIndex:
    def __init__(self, chunks: List[CodeChunk]):
        self.chunks = chunks
        self.fields: Dict[str, _FieldIndex] = {}
        if chunks:
            for name, text_of in _FIELD_TEXT.items():
                self.fields[name] = _FieldIndex([text_of(c) for c in chunks])

    def score(self, terms: List[str]) -> np.ndarray:
        total = np.zeros(len(self.chunks), dtype=np.float64)
        for name, field in self.fields.items():
            field_scores = field.scores(terms)
            if field_scores is not None:
                total += FIELD_WEIGHTS[name] * np.asarray(field_scores, dtype=np.float64)
        return total


def file_type_matches(file_path: str, file_type: str) -> bool:
    ext = file_type.lstrip(".")
    return re.search(rf"\.{re.escape(ext)}$", file_path, re.IGNORECASE) is not None


class LexicalIndex:
    """Per-repository text indexes, built on demand from chunk storage.

    An index keyed by None spans every repository.
    """

    def __init__(self, chunk_store):
        self.chunk_store = chunk_store
        self._indexes: Dict[Optional[str], _CorpusIndex] = {}
        self._lock = threading.Lock()

    def is_built(self, repository_id: Optional[str] = None) -> bool:
        with self._lock:
            return repository_id in self._indexes

    def build(self, repository_id: Optional[str] = None) -> int:
        """Build or rebuild the index for a repository. Returns the number of chunks indexed."""
        chunks = self.chunk_store.list_chunks(repository_id)
        index = _CorpusIndex(chunks)
        with self._lock:
            self._indexes[repository_id] = index
        logger.info(f"Built lexical index for {repository_id or 'all repositories'} ({len(chunks)} chunks)")
        return len(chunks)

    def invalidate(self, repository_id: Optional[str] = None) -> None:
        """Drop the repository's index and the global one."""
        with self._lock:
            self._indexes.pop(repository_id, None)
            self._indexes.pop(None, None)

    def search(
        self,
        query: str,
        repository_id: Optional[str] = None,
        language: Optional[str] = None,
        file_type: Optional[str] = None,
    ) -> List[Tuple[CodeChunk, float]]:
        """All matching chunks with their raw scores, best first.

        Raises:
            LexicalIndexMissingError: If the index has not been built
        """
        with self._lock:
            index = self._indexes.get(repository_id)
        if index is None:
            raise LexicalIndexMissingError(f"text index for {repository_id or 'all repositories'} is not built")

        terms = tokenize_query(query)
        if not terms or not index.chunks:
            return []

        scores = index.score(terms)
        wanted_language = normalize_language(language) if language else None
        hits = []
        for chunk, score in zip(index.chunks, scores):
            if score <= 0:
                continue
            if wanted_language and chunk.language != wanted_language:
                continue
            if file_type and not file_type_matches(chunk.file_path, file_type):
                continue
            hits.append((chunk, float(score)))
        hits.sort(key=lambda hit: hit[1], reverse=True)
        return hits
