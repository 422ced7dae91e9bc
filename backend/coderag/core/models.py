"""Data models for coderag."""

from __future__ import annotations

import dataclasses
import datetime as _dt
import hashlib
import posixpath
import uuid
from typing import Dict, List, Optional


def utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def content_hash(content: str) -> str:
    """SHA256 hex digest of chunk content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


_LANGUAGE_ALIASES: Dict[str, str] = {
    "js": "javascript",
    "ts": "typescript",
    "py": "python",
    "golang": "go",
    "c++": "cpp",
    "cxx": "cpp",
    "cs": "csharp",
    "c#": "csharp",
    "rb": "ruby",
    "rs": "rust",
    "sh": "shell",
    "bash": "shell",
    "yml": "yaml",
    "md": "markdown",
}


def normalize_language(language: str) -> str:
    """Map language aliases to their canonical name; unknown names pass through."""
    return _LANGUAGE_ALIASES.get(language, language)


@dataclasses.dataclass
class FileRecord:
    """A source file handed to the chunker."""

    path: str
    content: str
    language: str = ""
    size: int = 0


@dataclasses.dataclass
class ChunkMetadata:
    functions: List[str] = dataclasses.field(default_factory=list)
    classes: List[str] = dataclasses.field(default_factory=list)
    variables: List[str] = dataclasses.field(default_factory=list)
    types: List[str] = dataclasses.field(default_factory=list)
    complexity: int = 1

    def to_dict(self) -> Dict:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "ChunkMetadata":
        data = data or {}
        return cls(
            functions=list(data.get("functions") or []),
            classes=list(data.get("classes") or []),
            variables=list(data.get("variables") or []),
            types=list(data.get("types") or []),
            complexity=int(data.get("complexity", 1)),
        )


@dataclasses.dataclass
class CodeChunk:
    """A contiguous line range of one file plus extracted metadata."""

    repository_id: str
    file_path: str
    language: str
    start_line: int
    end_line: int
    content: str
    metadata: ChunkMetadata = dataclasses.field(default_factory=ChunkMetadata)
    imports: List[str] = dataclasses.field(default_factory=list)
    id: str = dataclasses.field(default_factory=new_id)
    file_name: str = ""
    content_hash: str = ""
    vector_id: Optional[str] = None
    created_at: _dt.datetime = dataclasses.field(default_factory=utcnow)
    updated_at: _dt.datetime = dataclasses.field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if self.end_line < self.start_line:
            raise ValueError(f"end_line {self.end_line} precedes start_line {self.start_line}")
        if not self.file_name:
            self.file_name = posixpath.basename(self.file_path)
        if not self.content_hash:
            self.content_hash = content_hash(self.content)

    @property
    def is_indexed(self) -> bool:
        return bool(self.vector_id)

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1

    @property
    def file_extension(self) -> str:
        return posixpath.splitext(self.file_name)[1].lstrip(".")


class JobStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = (PENDING, PROCESSING, COMPLETED, FAILED)
    ACTIVE = (PENDING, PROCESSING)


class JobPriority:
    HIGH = 1
    NORMAL = 2
    LOW = 3


@dataclasses.dataclass
class EmbeddingJob:
    """One unit of embedding work for a repository.

    Status moves pending -> processing -> completed | failed, or back to
    pending on a retry while attempts remain.
    """

    repository_id: str
    priority: int = JobPriority.NORMAL
    status: str = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    error_message: Optional[str] = None
    progress: float = 0.0
    total_chunks: int = 0
    processed_chunks: int = 0
    failed_chunks: int = 0
    id: str = dataclasses.field(default_factory=new_id)
    created_at: _dt.datetime = dataclasses.field(default_factory=utcnow)
    started_at: Optional[_dt.datetime] = None
    completed_at: Optional[_dt.datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in JobStatus.ACTIVE

    def mark_processing(self) -> None:
        self.status = JobStatus.PROCESSING
        self.started_at = utcnow()

    def mark_completed(self) -> None:
        self.status = JobStatus.COMPLETED
        self.completed_at = utcnow()

    def mark_failed(self, error: str) -> None:
        self.status = JobStatus.FAILED
        self.error_message = error
        self.completed_at = utcnow()

    def retry_or_fail(self, error: str) -> None:
        """Record a failed attempt; back to pending while attempts remain."""
        self.attempts = min(self.attempts + 1, self.max_attempts)
        if self.attempts >= self.max_attempts:
            self.mark_failed(error)
            return
        self.status = JobStatus.PENDING
        self.started_at = None
        self.error_message = None


class Relevance:
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


HIGH_RELEVANCE_THRESHOLD = 0.85
MEDIUM_RELEVANCE_THRESHOLD = 0.60


@dataclasses.dataclass
class SimilarityResult:
    chunk: CodeChunk
    score: float
    distance: float = 0.0
    relevance: str = Relevance.LOW
    highlight: str = ""

    def __post_init__(self) -> None:
        self.calculate_relevance()

    def calculate_relevance(self) -> None:
        self.distance = 1.0 - self.score
        if self.score >= HIGH_RELEVANCE_THRESHOLD:
            self.relevance = Relevance.HIGH
        elif self.score >= MEDIUM_RELEVANCE_THRESHOLD:
            self.relevance = Relevance.MEDIUM
        else:
            self.relevance = Relevance.LOW


@dataclasses.dataclass
class SearchPage:
    """A page of lexical search results."""

    results: List[SimilarityResult]
    total: int
    has_more: bool
    query: str


class Role:
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"

    ALL = (USER, ASSISTANT, SYSTEM)


DEFAULT_TITLE = "New Chat"
MAX_TITLE_LENGTH = 50


@dataclasses.dataclass
class RetrievedChunk:
    chunk_id: str
    file_path: str
    start_line: int
    end_line: int
    content: str
    similarity: Optional[float] = None
    language: Optional[str] = None

    @classmethod
    def from_result(cls, result: SimilarityResult) -> "RetrievedChunk":
        chunk = result.chunk
        return cls(
            chunk_id=chunk.id,
            file_path=chunk.file_path,
            start_line=chunk.start_line,
            end_line=chunk.end_line,
            content=chunk.content,
            similarity=result.score,
            language=chunk.language,
        )


@dataclasses.dataclass
class ChatMessage:
    role: str
    content: str
    retrieved_chunks: Optional[List[RetrievedChunk]] = None
    tokens_used: Optional[int] = None
    id: str = dataclasses.field(default_factory=new_id)
    timestamp: _dt.datetime = dataclasses.field(default_factory=utcnow)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "retrieved_chunks": (
                [dataclasses.asdict(c) for c in self.retrieved_chunks]
                if self.retrieved_chunks is not None
                else None
            ),
            "tokens_used": self.tokens_used,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ChatMessage":
        chunks = data.get("retrieved_chunks")
        return cls(
            id=data["id"],
            role=data["role"],
            content=data["content"],
            retrieved_chunks=[RetrievedChunk(**c) for c in chunks] if chunks is not None else None,
            tokens_used=data.get("tokens_used"),
            timestamp=_dt.datetime.fromisoformat(data["timestamp"]),
        )


@dataclasses.dataclass
class Conversation:
    """A chat session: ordered messages, optionally bound to a repository."""

    user_id: str
    repository_id: Optional[str] = None
    title: str = DEFAULT_TITLE
    messages: List[ChatMessage] = dataclasses.field(default_factory=list)
    id: str = dataclasses.field(default_factory=new_id)
    created_at: _dt.datetime = dataclasses.field(default_factory=utcnow)
    updated_at: _dt.datetime = dataclasses.field(default_factory=utcnow)

    @property
    def has_repository(self) -> bool:
        return bool(self.repository_id)

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def total_tokens_used(self) -> int:
        return sum(m.tokens_used or 0 for m in self.messages)

    def append_message(
        self,
        role: str,
        content: str,
        retrieved_chunks: Optional[List[RetrievedChunk]] = None,
        tokens_used: Optional[int] = None,
    ) -> ChatMessage:
        if role not in Role.ALL:
            raise ValueError(f"invalid message role: {role!r}")
        message = ChatMessage(
            role=role,
            content=content,
            retrieved_chunks=retrieved_chunks,
            tokens_used=tokens_used,
        )
        self.messages.append(message)
        self.updated_at = message.timestamp
        return message

    def generate_title(self) -> str:
        """Title from the first user message, cut to 47 chars plus an ellipsis past 50."""
        for message in self.messages:
            if message.role == Role.USER:
                title = message.content
                if len(title) > MAX_TITLE_LENGTH:
                    title = title[:MAX_TITLE_LENGTH - 3] + "..."
                return title
        return DEFAULT_TITLE
