from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict

from ..core.models import CodeChunk, Conversation, EmbeddingJob, JobPriority, RetrievedChunk, SimilarityResult


class ChunkResponse(BaseModel):
    id: str
    repository_id: str
    file_path: str
    file_name: str
    language: str
    start_line: int
    end_line: int
    content: str
    functions: List[str] = []
    classes: List[str] = []
    imports: List[str] = []
    complexity: int = 1
    vector_id: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_chunk(cls, chunk: CodeChunk) -> "ChunkResponse":
        return cls(
            id=chunk.id,
            repository_id=chunk.repository_id,
            file_path=chunk.file_path,
            file_name=chunk.file_name,
            language=chunk.language,
            start_line=chunk.start_line,
            end_line=chunk.end_line,
            content=chunk.content,
            functions=chunk.metadata.functions,
            classes=chunk.metadata.classes,
            imports=chunk.imports,
            complexity=chunk.metadata.complexity,
            vector_id=chunk.vector_id,
            created_at=chunk.created_at,
        )


class SearchResult(BaseModel):
    chunk: ChunkResponse
    score: float
    distance: float
    relevance: str
    highlight: str

    @classmethod
    def from_result(cls, result: SimilarityResult) -> "SearchResult":
        return cls(
            chunk=ChunkResponse.from_chunk(result.chunk),
            score=result.score,
            distance=result.distance,
            relevance=result.relevance,
            highlight=result.highlight,
        )


class SearchRequest(BaseModel):
    query: str
    repository_id: Optional[str] = None
    language: Optional[str] = None
    file_type: Optional[str] = None
    limit: int = 0
    offset: int = 0


class SearchResponse(BaseModel):
    results: List[SearchResult]
    total: int
    has_more: bool
    query: str


class VectorSearchRequest(BaseModel):
    query: str
    repository_id: Optional[str] = None
    limit: int = 20


class HybridSearchRequest(VectorSearchRequest):
    vector_weight: float = 0.0
    text_weight: float = 0.0


class SimilarityResponse(BaseModel):
    results: List[SearchResult]
    query: Optional[str] = None
    took_ms: float


class StatsResponse(BaseModel):
    total_chunks: int
    total_lines: int
    avg_complexity: float
    languages: List[str]


class JobResponse(BaseModel):
    id: str
    repository_id: str
    status: str
    priority: int
    attempts: int
    max_attempts: int
    error_message: Optional[str] = None
    progress: float
    total_chunks: int
    processed_chunks: int
    failed_chunks: int
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EmbedRequest(BaseModel):
    priority: int = JobPriority.NORMAL


class QueueAllResponse(BaseModel):
    queued: int
    jobs: List[JobResponse]


class DeleteVectorsResponse(BaseModel):
    repository_id: str
    deleted: int


class IngestRequest(BaseModel):
    path: str
    embed: bool = True


class RetrievedChunkResponse(BaseModel):
    chunk_id: str
    file_path: str
    start_line: int
    end_line: int
    content: str
    similarity: Optional[float] = None
    language: Optional[str] = None

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    id: str
    role: str
    content: str
    retrieved_chunks: Optional[List[RetrievedChunkResponse]] = None
    tokens_used: Optional[int] = None
    timestamp: datetime

    class Config:
        from_attributes = True


class SessionResponse(BaseModel):
    id: str
    user_id: str
    repository_id: Optional[str] = None
    title: str
    messages: List[MessageResponse] = []
    total_tokens_used: int = 0
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> "SessionResponse":
        return cls.model_validate(conversation)


class SessionSummary(BaseModel):
    id: str
    repository_id: Optional[str] = None
    title: str
    message_count: int
    updated_at: datetime

    class Config:
        from_attributes = True


class CreateSessionRequest(BaseModel):
    repository_id: Optional[str] = None
    title: Optional[str] = None


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=10000)
    stream: bool = False


class ChatResponse(BaseModel):
    session: SessionResponse
    answer: str
    context: List[RetrievedChunkResponse]
    tokens_used: int


def retrieved_chunks(chunks: List[RetrievedChunk]) -> List[RetrievedChunkResponse]:
    return [RetrievedChunkResponse.model_validate(c) for c in chunks]


def job_response(job: EmbeddingJob) -> JobResponse:
    return JobResponse.model_validate(job)


def stats_response(stats: Dict) -> StatsResponse:
    return StatsResponse(**stats)
