"""Search routes."""

import time
from typing import List, Optional

from fastapi import APIRouter, Depends

from ...search import validate_vector_request, validate_weights
from ...services import Services
from ..deps import get_services
from ..schemas import (
    ChunkResponse,
    HybridSearchRequest,
    SearchRequest,
    SearchResponse,
    SearchResult,
    SimilarityResponse,
    StatsResponse,
    VectorSearchRequest,
    stats_response,
)

router = APIRouter(prefix="/search", tags=["search"])


@router.post("", response_model=SearchResponse)
def search(request: SearchRequest, services: Services = Depends(get_services)):
    page = services.search_engine.search_chunks(
        request.query,
        repository_id=request.repository_id,
        language=request.language,
        file_type=request.file_type,
        limit=request.limit,
        offset=request.offset,
    )
    return SearchResponse(
        results=[SearchResult.from_result(r) for r in page.results],
        total=page.total,
        has_more=page.has_more,
        query=page.query,
    )


@router.post("/vector", response_model=SimilarityResponse)
def vector_search(request: VectorSearchRequest, services: Services = Depends(get_services)):
    validate_vector_request(request.query, request.limit)
    started = time.perf_counter()
    results = services.search_engine.vector_search(request.repository_id, request.query, request.limit)
    return SimilarityResponse(
        results=[SearchResult.from_result(r) for r in results],
        query=request.query,
        took_ms=(time.perf_counter() - started) * 1000,
    )


@router.post("/hybrid", response_model=SimilarityResponse)
def hybrid_search(request: HybridSearchRequest, services: Services = Depends(get_services)):
    validate_vector_request(request.query, request.limit)
    vector_weight, _ = validate_weights(request.vector_weight, request.text_weight)
    started = time.perf_counter()
    results = services.search_engine.hybrid_search(
        request.repository_id, request.query, request.limit, vector_weight
    )
    return SimilarityResponse(
        results=[SearchResult.from_result(r) for r in results],
        query=request.query,
        took_ms=(time.perf_counter() - started) * 1000,
    )


@router.get("/similar/{chunk_id}", response_model=SimilarityResponse)
def similar_chunks(chunk_id: str, limit: int = 10, services: Services = Depends(get_services)):
    started = time.perf_counter()
    results = services.search_engine.find_similar_chunks(chunk_id, limit)
    return SimilarityResponse(
        results=[SearchResult.from_result(r) for r in results],
        took_ms=(time.perf_counter() - started) * 1000,
    )


@router.get("/languages", response_model=List[str])
def languages(repository_id: Optional[str] = None, services: Services = Depends(get_services)):
    return services.search_engine.get_languages(repository_id)


@router.get("/stats", response_model=StatsResponse)
def stats(repository_id: Optional[str] = None, services: Services = Depends(get_services)):
    return stats_response(services.search_engine.get_stats(repository_id))


@router.get("/recent", response_model=List[ChunkResponse])
def recent(repository_id: Optional[str] = None, limit: int = 10, services: Services = Depends(get_services)):
    return [ChunkResponse.from_chunk(c) for c in services.search_engine.get_recent_chunks(repository_id, limit)]
