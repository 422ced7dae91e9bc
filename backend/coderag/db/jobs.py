"""Embedding job storage."""

from __future__ import annotations

import threading
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from ..core.errors import AlreadyQueuedError, JobNotFoundError
from ..core.models import EmbeddingJob, JobStatus

from .models import EmbeddingJobRow

_FIELDS = (
    "id", "repository_id", "status", "priority", "attempts", "max_attempts",
    "error_message", "progress", "total_chunks", "processed_chunks", "failed_chunks",
    "created_at", "started_at", "completed_at",
)


def _to_job(row: EmbeddingJobRow) -> EmbeddingJob:
    return EmbeddingJob(**{name: getattr(row, name) for name in _FIELDS})


class JobStore:
    """Relational store for embedding jobs, safe to share between threads."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        # Serializes the check-then-insert of create_job within this process.
        self._create_lock = threading.Lock()

    def create_job(self, job: EmbeddingJob) -> EmbeddingJob:
        """Persist a new job unless the repository already has an active one.

        Raises:
            AlreadyQueuedError: If a pending or processing job exists
        """
        with self._create_lock, self.session_factory() as db:
            existing = db.scalars(
                select(EmbeddingJobRow.id).where(
                    EmbeddingJobRow.repository_id == job.repository_id,
                    EmbeddingJobRow.status.in_(JobStatus.ACTIVE),
                )
            ).first()
            if existing is not None:
                raise AlreadyQueuedError(job.repository_id)
            db.add(EmbeddingJobRow(**{name: getattr(job, name) for name in _FIELDS}))
            db.commit()
        return job

    def save(self, job: EmbeddingJob) -> None:
        with self.session_factory() as db:
            row = db.get(EmbeddingJobRow, job.id)
            if row is None:
                raise JobNotFoundError(f"job {job.id} not found")
            for name in _FIELDS[1:]:
                setattr(row, name, getattr(job, name))
            db.commit()

    def get(self, job_id: str) -> EmbeddingJob:
        with self.session_factory() as db:
            row = db.get(EmbeddingJobRow, job_id)
            if row is None:
                raise JobNotFoundError(f"job {job_id} not found")
            return _to_job(row)

    def latest_for_repository(self, repository_id: str) -> Optional[EmbeddingJob]:
        with self.session_factory() as db:
            row = db.scalars(
                select(EmbeddingJobRow)
                .where(EmbeddingJobRow.repository_id == repository_id)
                .order_by(EmbeddingJobRow.created_at.desc())
            ).first()
            return _to_job(row) if row is not None else None

    def pending(self, limit: int = 100) -> List[EmbeddingJob]:
        """Pending jobs, highest priority first, then oldest first."""
        with self.session_factory() as db:
            rows = db.scalars(
                select(EmbeddingJobRow)
                .where(EmbeddingJobRow.status == JobStatus.PENDING)
                .order_by(EmbeddingJobRow.priority, EmbeddingJobRow.created_at)
                .limit(limit)
            )
            return [_to_job(row) for row in rows]

    def count_by_status(self) -> Dict[str, int]:
        counts = {status: 0 for status in JobStatus.ALL}
        with self.session_factory() as db:
            for status, count in db.execute(
                select(EmbeddingJobRow.status, func.count()).group_by(EmbeddingJobRow.status)
            ):
                counts[status] = count
        return counts
