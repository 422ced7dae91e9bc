"""Lexical, vector and hybrid search over stored chunks."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple

from ..core.errors import (
    ChunkNotFoundError,
    CollectionMissingError,
    EmbeddingError,
    InvalidSearchRequestError,
    LexicalIndexMissingError,
)
from ..core.models import CodeChunk, SearchPage, SimilarityResult
from .highlight import generate_highlight, truncate_content

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 500
DEFAULT_LIMIT = 20
MAX_LIMIT = 100
DEFAULT_VECTOR_WEIGHT = 0.7
DEFAULT_TEXT_WEIGHT = 0.3
DEFAULT_SIMILAR_LIMIT = 10


def normalize_limit(limit: int) -> int:
    if limit <= 0 or limit > MAX_LIMIT:
        return DEFAULT_LIMIT
    return limit


def validate_search_request(query: str, limit: int, offset: int) -> int:
    """Check a lexical search request and return the effective limit.

    Raises:
        InvalidSearchRequestError: On an empty or oversized query, or an out of range limit/offset
    """
    if not query or not query.strip():
        raise InvalidSearchRequestError("query is required")
    if len(query) > MAX_QUERY_LENGTH:
        raise InvalidSearchRequestError(f"query must be at most {MAX_QUERY_LENGTH} characters")
    if limit < 0 or limit > MAX_LIMIT:
        raise InvalidSearchRequestError(f"limit must be between 0 and {MAX_LIMIT}")
    if offset < 0:
        raise InvalidSearchRequestError("offset must not be negative")
    return limit or DEFAULT_LIMIT


def validate_weights(vector_weight: float, text_weight: float) -> Tuple[float, float]:
    """Validate hybrid weights. Both zero selects the 0.7 / 0.3 defaults.

    Raises:
        InvalidSearchRequestError: If a weight is outside [0, 1] or the pair does not sum to ~1
    """
    for name, weight in (("vector_weight", vector_weight), ("text_weight", text_weight)):
        if weight < 0 or weight > 1:
            raise InvalidSearchRequestError(f"{name} must be between 0 and 1")
    if vector_weight == 0 and text_weight == 0:
        return DEFAULT_VECTOR_WEIGHT, DEFAULT_TEXT_WEIGHT
    if vector_weight > 0 and text_weight > 0:
        total = vector_weight + text_weight
        if total < 0.95 or total > 1.05:
            raise InvalidSearchRequestError("vector_weight and text_weight must sum to 1")
    return vector_weight, text_weight


def validate_vector_request(query: str, limit: int) -> None:
    if not query or not query.strip():
        raise InvalidSearchRequestError("query is required")
    if len(query) > MAX_QUERY_LENGTH:
        raise InvalidSearchRequestError(f"query must be at most {MAX_QUERY_LENGTH} characters")
    if limit < 0 or limit > MAX_LIMIT:
        raise InvalidSearchRequestError(f"limit must be between 0 and {MAX_LIMIT}")


class SearchEngine:
    """Combines the lexical index and the vector index behind one interface."""

    def __init__(
        self,
        chunk_store,
        lexical_index,
        vector_index,
        provider,
        collection_name: str = "codechunks",
    ):
        self.chunk_store = chunk_store
        self.lexical_index = lexical_index
        self.vector_index = vector_index
        self.provider = provider
        self.collection_name = collection_name
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="hybrid-search")

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Lexical
    # ------------------------------------------------------------------

    def _lexical_hits(
        self,
        query: str,
        repository_id: Optional[str] = None,
        language: Optional[str] = None,
        file_type: Optional[str] = None,
    ) -> List[Tuple[CodeChunk, float]]:
        try:
            return self.lexical_index.search(query, repository_id, language, file_type)
        except LexicalIndexMissingError:
            logger.info(f"Lexical index missing for {repository_id or 'all repositories'}, building")
            self.lexical_index.build(repository_id)
            return self.lexical_index.search(query, repository_id, language, file_type)

    def search_chunks(
        self,
        query: str,
        repository_id: Optional[str] = None,
        language: Optional[str] = None,
        file_type: Optional[str] = None,
        limit: int = 0,
        offset: int = 0,
    ) -> SearchPage:
        """Paged full-text search with scores normalized to [0, 1] against the best hit."""
        limit = validate_search_request(query, limit, offset)
        started = time.perf_counter()
        hits = self._lexical_hits(query, repository_id, language, file_type)

        total = len(hits)
        max_score = hits[0][1] if hits else 0.0
        page = hits[offset:offset + limit]
        results = [
            SimilarityResult(
                chunk=chunk,
                score=score / max_score if max_score > 0 else 0.0,
                highlight=generate_highlight(chunk.content, query),
            )
            for chunk, score in page
        ]
        logger.info(
            f"Lexical search '{query}' matched {total} chunks in {(time.perf_counter() - started) * 1000:.1f}ms"
        )
        return SearchPage(results=results, total=total, has_more=offset + len(page) < total, query=query)

    # ------------------------------------------------------------------
    # Vector
    # ------------------------------------------------------------------

    def vector_search(self, repository_id: Optional[str], query: str, limit: int = DEFAULT_LIMIT) -> List[SimilarityResult]:
        limit = normalize_limit(limit)
        started = time.perf_counter()
        vector = self.provider.generate_embedding(query)
        results = self._nearest(vector, limit, repository_id)
        for result in results:
            result.highlight = generate_highlight(result.chunk.content, query)
        logger.info(
            f"Vector search returned {len(results)} chunks in {(time.perf_counter() - started) * 1000:.1f}ms"
        )
        return results

    def _nearest(self, vector: List[float], limit: int, repository_id: Optional[str]) -> List[SimilarityResult]:
        try:
            hits = self.vector_index.search(self.collection_name, vector, limit, repository_id=repository_id)
        except CollectionMissingError:
            logger.warning(f"Vector collection {self.collection_name} does not exist yet")
            return []
        if not hits:
            return []

        chunks = self.chunk_store.get_chunks([hit.id for hit in hits], repository_id)
        results = []
        for hit in hits:
            chunk = chunks.get(hit.id)
            if chunk is None:
                continue
            results.append(SimilarityResult(chunk=chunk, score=min(1.0, max(0.0, float(hit.score)))))
        return results

    # ------------------------------------------------------------------
    # Hybrid
    # ------------------------------------------------------------------

    def _vector_part(self, repository_id: Optional[str], query: str, limit: int) -> List[SimilarityResult]:
        try:
            return self.vector_search(repository_id, query, limit)
        except EmbeddingError as e:
            logger.error(f"Vector part of hybrid search failed, using text results only: {e}")
            return []

    def hybrid_search(
        self,
        repository_id: Optional[str],
        query: str,
        limit: int = DEFAULT_LIMIT,
        vector_weight: float = DEFAULT_VECTOR_WEIGHT,
    ) -> List[SimilarityResult]:
        """Fuse vector and lexical results.

        Each chunk scores ``vector_weight * vector + (1 - vector_weight) * lexical``
        where lexical scores are normalized by their maximum. Chunks found by
        only one side keep only that side's weighted score.
        """
        limit = normalize_limit(limit)
        if vector_weight < 0 or vector_weight > 1:
            vector_weight = DEFAULT_VECTOR_WEIGHT
        text_weight = 1.0 - vector_weight
        started = time.perf_counter()

        vector_future = self._executor.submit(self._vector_part, repository_id, query, limit * 2)
        text_future = self._executor.submit(self._lexical_hits, query, repository_id)
        vector_results = vector_future.result()
        text_hits = text_future.result()[:limit * 2]

        fused: Dict[str, Tuple[CodeChunk, float]] = {}
        for result in vector_results:
            fused[result.chunk.id] = (result.chunk, result.score * vector_weight)

        max_text = text_hits[0][1] if text_hits else 0.0
        for chunk, score in text_hits:
            normalized = score / max_text if max_text > 0 else 0.0
            weighted = normalized * text_weight
            if chunk.id in fused:
                existing, current = fused[chunk.id]
                fused[chunk.id] = (existing, current + weighted)
            else:
                fused[chunk.id] = (chunk, weighted)

        ranked = sorted(fused.values(), key=lambda item: item[1], reverse=True)[:limit]
        results = [
            SimilarityResult(chunk=chunk, score=score, highlight=generate_highlight(chunk.content, query))
            for chunk, score in ranked
        ]
        logger.info(
            f"Hybrid search: {len(vector_results)} vector + {len(text_hits)} text hits -> {len(results)} results "
            f"in {(time.perf_counter() - started) * 1000:.1f}ms"
        )
        return results

    # ------------------------------------------------------------------
    # Extras
    # ------------------------------------------------------------------

    def find_similar_chunks(self, chunk_id: str, limit: int = DEFAULT_SIMILAR_LIMIT) -> List[SimilarityResult]:
        """Chunks nearest to an embedded chunk, excluding the chunk itself.

        Raises:
            ChunkNotFoundError: If the chunk does not exist or has no vector yet
        """
        if limit <= 0 or limit > MAX_LIMIT:
            limit = DEFAULT_SIMILAR_LIMIT
        source = self.chunk_store.get_chunk(chunk_id)
        if not source.is_indexed:
            raise ChunkNotFoundError(f"chunk {chunk_id} has no embedding yet")

        vector = self.provider.generate_embedding(source.content)
        results = [r for r in self._nearest(vector, limit + 1, None) if r.chunk.id != source.id][:limit]
        for result in results:
            result.highlight = truncate_content(result.chunk.content)
        return results

    def get_languages(self, repository_id: Optional[str] = None) -> List[str]:
        return self.chunk_store.languages(repository_id)

    def get_stats(self, repository_id: Optional[str] = None) -> Dict:
        return self.chunk_store.stats(repository_id)

    def get_recent_chunks(self, repository_id: Optional[str] = None, limit: int = 10) -> List[CodeChunk]:
        if limit <= 0 or limit > MAX_LIMIT:
            limit = 10
        return self.chunk_store.recent(repository_id, limit)
