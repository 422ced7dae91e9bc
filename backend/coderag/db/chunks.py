"""Chunk storage."""

from __future__ import annotations

import logging
import time
from typing import Dict, List, Optional

from sqlalchemy import distinct, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..core.errors import ChunkNotFoundError, StorageError
from ..core.models import ChunkMetadata, CodeChunk, utcnow
from .models import CodeChunkRow

logger = logging.getLogger(__name__)


def _to_row(chunk: CodeChunk) -> CodeChunkRow:
    return CodeChunkRow(
        id=chunk.id,
        repository_id=chunk.repository_id,
        file_path=chunk.file_path,
        file_name=chunk.file_name,
        language=chunk.language,
        start_line=chunk.start_line,
        end_line=chunk.end_line,
        content=chunk.content,
        content_hash=chunk.content_hash,
        chunk_metadata=chunk.metadata.to_dict(),
        imports=list(chunk.imports),
        vector_id=chunk.vector_id,
        created_at=chunk.created_at,
        updated_at=chunk.updated_at,
    )


def _to_chunk(row: CodeChunkRow) -> CodeChunk:
    return CodeChunk(
        id=row.id,
        repository_id=row.repository_id,
        file_path=row.file_path,
        file_name=row.file_name,
        language=row.language,
        start_line=row.start_line,
        end_line=row.end_line,
        content=row.content,
        content_hash=row.content_hash,
        metadata=ChunkMetadata.from_dict(row.chunk_metadata),
        imports=list(row.imports or []),
        vector_id=row.vector_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class ChunkStore:
    """Relational store for code chunks."""

    def __init__(
        self,
        session_factory: sessionmaker,
        batch_size: int = 100,
        attempts: int = 3,
        min_success_rate: float = 0.5,
        retry_delay: float = 1.0,
    ):
        self.session_factory = session_factory
        self.batch_size = batch_size
        self.attempts = attempts
        self.min_success_rate = min_success_rate
        self.retry_delay = retry_delay

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def insert_chunks(self, chunks: List[CodeChunk]) -> int:
        """Insert chunks in batches.

        Chunks whose content hash is already stored for their repository are
        skipped, so re-ingesting unchanged files adds nothing to embed. A
        batch that fails outright is retried; duplicates racing in between
        are skipped row by row. The whole insert fails only when fewer than
        `min_success_rate` of the new chunks were stored.

        Returns:
            Number of chunks stored

        Raises:
            StorageError: If the success rate falls below the threshold
        """
        chunks = self._new_chunks(chunks)
        if not chunks:
            return 0

        total_batches = (len(chunks) + self.batch_size - 1) // self.batch_size
        logger.info(f"Storing {len(chunks)} code chunks in {total_batches} batches")

        total_inserted = 0
        failed_batches = []
        for i in range(0, len(chunks), self.batch_size):
            batch = chunks[i:i + self.batch_size]
            batch_num = i // self.batch_size + 1
            inserted = 0
            for attempt in range(1, self.attempts + 1):
                try:
                    inserted = self._insert_batch(batch)
                    break
                except SQLAlchemyError as e:
                    if attempt < self.attempts:
                        delay = self.retry_delay * attempt
                        logger.warning(
                            f"Failed to insert batch {batch_num} (attempt {attempt}/{self.attempts}), "
                            f"retrying in {delay}s: {e}"
                        )
                        time.sleep(delay)
                    else:
                        logger.error(f"Failed to insert batch {batch_num} after {self.attempts} attempts: {e}")
            if inserted == 0:
                failed_batches.append(batch_num)
            total_inserted += inserted

        success_rate = total_inserted / len(chunks)
        logger.info(f"Chunk storage complete: {total_inserted}/{len(chunks)} chunks inserted")
        if failed_batches:
            logger.warning(
                f"{len(failed_batches)} batches failed, {total_inserted}/{len(chunks)} chunks stored "
                f"({success_rate * 100:.1f}% success rate)"
            )
        if success_rate < self.min_success_rate:
            raise StorageError(
                f"chunk storage failed: only {total_inserted}/{len(chunks)} chunks inserted "
                f"({success_rate * 100:.1f}% success rate)"
            )
        return total_inserted

    def _new_chunks(self, chunks: List[CodeChunk]) -> List[CodeChunk]:
        """Drop chunks whose (repository, content hash) is stored or repeated."""
        if not chunks:
            return []
        seen = set()
        for repository_id in {c.repository_id for c in chunks}:
            hashes = sorted({c.content_hash for c in chunks if c.repository_id == repository_id})
            with self.session_factory() as db:
                for i in range(0, len(hashes), 500):
                    stmt = select(CodeChunkRow.content_hash).where(
                        CodeChunkRow.repository_id == repository_id,
                        CodeChunkRow.content_hash.in_(hashes[i:i + 500]),
                    )
                    seen.update((repository_id, h) for h in db.scalars(stmt))

        fresh = []
        for chunk in chunks:
            key = (chunk.repository_id, chunk.content_hash)
            if key in seen:
                continue
            seen.add(key)
            fresh.append(chunk)
        if len(fresh) < len(chunks):
            logger.info(f"Skipped {len(chunks) - len(fresh)} chunks already stored")
        return fresh

    def _insert_batch(self, batch: List[CodeChunk]) -> int:
        with self.session_factory() as db:
            try:
                db.add_all([_to_row(c) for c in batch])
                db.commit()
                return len(batch)
            except IntegrityError:
                db.rollback()
        return self._insert_each(batch)

    def _insert_each(self, batch: List[CodeChunk]) -> int:
        inserted = 0
        duplicates = 0
        for chunk in batch:
            with self.session_factory() as db:
                try:
                    db.add(_to_row(chunk))
                    db.commit()
                    inserted += 1
                except IntegrityError:
                    db.rollback()
                    duplicates += 1
        if duplicates:
            logger.info(f"Skipped {duplicates} duplicate chunks")
        return inserted

    def set_vector_id(self, chunk_id: str, vector_id: str) -> None:
        with self.session_factory() as db:
            result = db.execute(
                update(CodeChunkRow)
                .where(CodeChunkRow.id == chunk_id)
                .values(vector_id=vector_id, updated_at=utcnow())
            )
            db.commit()
        if result.rowcount == 0:
            raise ChunkNotFoundError(f"chunk {chunk_id} not found")

    def clear_vector_ids(self, repository_id: str) -> int:
        with self.session_factory() as db:
            result = db.execute(
                update(CodeChunkRow)
                .where(CodeChunkRow.repository_id == repository_id, CodeChunkRow.vector_id.is_not(None))
                .values(vector_id=None, updated_at=utcnow())
            )
            db.commit()
        return result.rowcount

    def delete_repository(self, repository_id: str) -> int:
        with self.session_factory() as db:
            deleted = (
                db.query(CodeChunkRow)
                .filter(CodeChunkRow.repository_id == repository_id)
                .delete(synchronize_session=False)
            )
            db.commit()
        return deleted

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_chunk(self, chunk_id: str) -> CodeChunk:
        with self.session_factory() as db:
            row = db.get(CodeChunkRow, chunk_id)
            if row is None:
                raise ChunkNotFoundError(f"chunk {chunk_id} not found")
            return _to_chunk(row)

    def get_chunks(self, chunk_ids: List[str], repository_id: Optional[str] = None) -> Dict[str, CodeChunk]:
        if not chunk_ids:
            return {}
        with self.session_factory() as db:
            stmt = select(CodeChunkRow).where(CodeChunkRow.id.in_(chunk_ids))
            if repository_id:
                stmt = stmt.where(CodeChunkRow.repository_id == repository_id)
            return {row.id: _to_chunk(row) for row in db.scalars(stmt)}

    def list_chunks(self, repository_id: Optional[str] = None) -> List[CodeChunk]:
        with self.session_factory() as db:
            stmt = select(CodeChunkRow).order_by(CodeChunkRow.file_path, CodeChunkRow.start_line)
            if repository_id:
                stmt = stmt.where(CodeChunkRow.repository_id == repository_id)
            return [_to_chunk(row) for row in db.scalars(stmt)]

    def list_unembedded(self, repository_id: str) -> List[CodeChunk]:
        with self.session_factory() as db:
            stmt = (
                select(CodeChunkRow)
                .where(CodeChunkRow.repository_id == repository_id, CodeChunkRow.vector_id.is_(None))
                .order_by(CodeChunkRow.file_path, CodeChunkRow.start_line)
            )
            return [_to_chunk(row) for row in db.scalars(stmt)]

    def vector_ids(self, repository_id: str) -> List[str]:
        with self.session_factory() as db:
            stmt = select(CodeChunkRow.vector_id).where(
                CodeChunkRow.repository_id == repository_id, CodeChunkRow.vector_id.is_not(None)
            )
            return list(db.scalars(stmt))

    def repositories(self, unembedded_only: bool = False) -> List[str]:
        with self.session_factory() as db:
            stmt = select(distinct(CodeChunkRow.repository_id))
            if unembedded_only:
                stmt = stmt.where(CodeChunkRow.vector_id.is_(None))
            return sorted(db.scalars(stmt))

    def languages(self, repository_id: Optional[str] = None) -> List[str]:
        with self.session_factory() as db:
            stmt = select(distinct(CodeChunkRow.language)).where(CodeChunkRow.language != "")
            if repository_id:
                stmt = stmt.where(CodeChunkRow.repository_id == repository_id)
            return sorted(db.scalars(stmt))

    def recent(self, repository_id: Optional[str] = None, limit: int = 10) -> List[CodeChunk]:
        with self.session_factory() as db:
            stmt = select(CodeChunkRow).order_by(CodeChunkRow.created_at.desc()).limit(limit)
            if repository_id:
                stmt = stmt.where(CodeChunkRow.repository_id == repository_id)
            return [_to_chunk(row) for row in db.scalars(stmt)]

    def stats(self, repository_id: Optional[str] = None) -> Dict:
        """Chunk count, total lines, average complexity and languages."""
        with self.session_factory() as db:
            stmt = select(
                func.count(CodeChunkRow.id),
                func.coalesce(func.sum(CodeChunkRow.end_line - CodeChunkRow.start_line), 0),
            )
            if repository_id:
                stmt = stmt.where(CodeChunkRow.repository_id == repository_id)
            total_chunks, total_lines = db.execute(stmt).one()

            # complexity lives in the JSON metadata column
            meta_stmt = select(CodeChunkRow.chunk_metadata)
            if repository_id:
                meta_stmt = meta_stmt.where(CodeChunkRow.repository_id == repository_id)
            complexities = [int((m or {}).get("complexity", 1)) for m in db.scalars(meta_stmt)]

        return {
            "total_chunks": int(total_chunks),
            "total_lines": int(total_lines),
            "avg_complexity": (sum(complexities) / len(complexities)) if complexities else 0.0,
            "languages": self.languages(repository_id),
        }
