"""SQLAlchemy models."""

from sqlalchemy import JSON, Column, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from .database import Base


class CodeChunkRow(Base):
    """A stored chunk; vector_id is set once the chunk is embedded."""

    __tablename__ = "code_chunks"

    id = Column(String(36), primary_key=True)
    repository_id = Column(String(64), nullable=False, index=True)
    file_path = Column(String(1024), nullable=False)
    file_name = Column(String(255), nullable=False)
    language = Column(String(50), nullable=False, default="", index=True)
    start_line = Column(Integer, nullable=False)
    end_line = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    content_hash = Column(String(64), nullable=False, index=True)
    chunk_metadata = Column("metadata", JSON, nullable=False, default=dict)
    imports = Column(JSON, nullable=False, default=list)
    vector_id = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_code_chunks_repo_file_lines", "repository_id", "file_path", "start_line"),
        UniqueConstraint("repository_id", "content_hash", name="uq_code_chunks_repo_hash"),
    )


class EmbeddingJobRow(Base):
    """Embedding job; retained after completion."""

    __tablename__ = "embedding_jobs"

    id = Column(String(36), primary_key=True)
    repository_id = Column(String(64), nullable=False, index=True)
    status = Column(String(20), nullable=False, index=True)  # pending, processing, completed, failed
    priority = Column(Integer, nullable=False, default=2)  # 1 high, 2 normal, 3 low
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    error_message = Column(Text)
    progress = Column(Float, nullable=False, default=0.0)
    total_chunks = Column(Integer, nullable=False, default=0)
    processed_chunks = Column(Integer, nullable=False, default=0)
    failed_chunks = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))


class ChatSessionRow(Base):
    """Chat session with its messages stored inline."""

    __tablename__ = "chat_sessions"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    repository_id = Column(String(64), nullable=True)
    title = Column(String(255), nullable=False, default="New Chat")
    messages = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, index=True)
