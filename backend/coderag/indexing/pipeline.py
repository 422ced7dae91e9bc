"""Background embedding pipeline.

A scheduler thread polls the job store for pending jobs and hands them to a
bounded queue; a pool of worker threads drains the queue, embeds each
repository's unembedded chunks batch by batch and writes the vectors to the
vector index.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Dict, List, Optional, Tuple

from ..core.errors import (
    AlreadyQueuedError,
    JobNotFoundError,
    OperationCancelledError,
    ValidationError,
)
from ..core.models import CodeChunk, EmbeddingJob, JobPriority, JobStatus
from ..storage.base import VectorPoint

logger = logging.getLogger(__name__)

VALID_PRIORITIES = (JobPriority.HIGH, JobPriority.NORMAL, JobPriority.LOW)


def chunk_payload(chunk: CodeChunk) -> Dict:
    return {
        "repositoryId": chunk.repository_id,
        "filePath": chunk.file_path,
        "fileName": chunk.file_name,
        "language": chunk.language,
        "startLine": chunk.start_line,
        "endLine": chunk.end_line,
        "functions": list(chunk.metadata.functions),
        "classes": list(chunk.metadata.classes),
        "contentHash": chunk.content_hash,
    }


class EmbeddingPipeline:
    """Durable, retrying embedding of stored chunks."""

    def __init__(
        self,
        chunk_store,
        job_store,
        vector_index,
        provider,
        collection_name: str = "codechunks",
        dimension: int = 1024,
        batch_size: int = 50,
        workers: int = 3,
        poll_interval: float = 3.0,
        queue_size: int = 100,
        max_attempts: int = 3,
        shutdown_timeout: float = 10.0,
    ):
        self.chunk_store = chunk_store
        self.job_store = job_store
        self.vector_index = vector_index
        self.provider = provider
        self.collection_name = collection_name
        self.dimension = dimension
        self.batch_size = batch_size
        self.workers = workers
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.shutdown_timeout = shutdown_timeout

        self._queue: "queue.Queue[EmbeddingJob]" = queue.Queue(maxsize=queue_size)
        self._stop_event = threading.Event()
        self._state_lock = threading.Lock()
        self._threads: List[threading.Thread] = []
        self._started = False
        self._stopped = False
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._started and not self._stopped

    def start(self) -> None:
        """Start the scheduler and the workers. Only the first call has an effect."""
        with self._state_lock:
            if self._started:
                return
            self._started = True

        scheduler = threading.Thread(target=self._schedule_loop, name="embedding-scheduler", daemon=True)
        self._threads.append(scheduler)
        for n in range(self.workers):
            self._threads.append(
                threading.Thread(target=self._worker_loop, args=(n,), name=f"embedding-worker-{n}", daemon=True)
            )
        for thread in self._threads:
            thread.start()
        logger.info(f"Embedding pipeline started with {self.workers} workers")

    def stop(self) -> None:
        """Signal cancellation and wait for the threads, up to the shutdown timeout."""
        with self._state_lock:
            if not self._started or self._stopped:
                return
            self._stopped = True
            self._closed = True
        self._stop_event.set()

        deadline = time.monotonic() + self.shutdown_timeout
        for thread in self._threads:
            thread.join(max(0.0, deadline - time.monotonic()))
        alive = [t.name for t in self._threads if t.is_alive()]
        if alive:
            logger.warning(f"Embedding pipeline shutdown timed out, still running: {', '.join(alive)}")

        self._requeue_undispatched()
        logger.info("Embedding pipeline stopped")

    def _requeue_undispatched(self) -> None:
        while True:
            try:
                job = self._queue.get_nowait()
            except queue.Empty:
                return
            job.status = JobStatus.PENDING
            job.started_at = None
            try:
                self.job_store.save(job)
            except Exception as e:
                logger.error(f"Failed to return job {job.id} to pending: {e}")

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _schedule_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.schedule_pending()
            except Exception:
                logger.exception("Embedding scheduler tick failed")
            self._stop_event.wait(self.poll_interval)

    def schedule_pending(self) -> int:
        """Move pending jobs into the work queue. Returns how many were dispatched.

        A job that does not fit in the queue stays pending for the next tick.
        """
        if self._closed:
            return 0
        dispatched = 0
        for job in self.job_store.pending(limit=self._queue.maxsize):
            if self._stop_event.is_set() or self._queue.full():
                break
            job.mark_processing()
            self.job_store.save(job)
            try:
                self._queue.put_nowait(job)
            except queue.Full:
                job.status = JobStatus.PENDING
                job.started_at = None
                self.job_store.save(job)
                break
            dispatched += 1
        if dispatched:
            logger.debug(f"Dispatched {dispatched} embedding jobs")
        return dispatched

    def _worker_loop(self, n: int) -> None:
        while not self._stop_event.is_set():
            try:
                job = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            try:
                self.process_job(job)
            finally:
                self._queue.task_done()
        logger.debug(f"Embedding worker {n} exiting")

    # ------------------------------------------------------------------
    # Job processing
    # ------------------------------------------------------------------

    def process_job(self, job: EmbeddingJob) -> EmbeddingJob:
        """Run one job to a terminal state, or back to pending on a retryable failure."""
        started = time.perf_counter()
        if job.status != JobStatus.PROCESSING:
            job.mark_processing()
        try:
            self._run_job(job)
        except OperationCancelledError:
            logger.info(f"Embedding job {job.id} interrupted by shutdown, returning it to pending")
            job.status = JobStatus.PENDING
            job.started_at = None
            self._save_final(job)
        except Exception as e:
            logger.exception(f"Embedding job {job.id} for {job.repository_id} failed")
            job.retry_or_fail(str(e))
            self._save_final(job)
        logger.info(
            f"Embedding job {job.id} for {job.repository_id}: {job.status} "
            f"({job.processed_chunks} embedded, {job.failed_chunks} failed) "
            f"in {time.perf_counter() - started:.2f}s"
        )
        return job

    def _save_final(self, job: EmbeddingJob) -> None:
        try:
            self.job_store.save(job)
        except Exception:
            logger.exception(f"Failed to persist state of embedding job {job.id}")

    def _run_job(self, job: EmbeddingJob) -> None:
        self.vector_index.ensure_collection(self.collection_name, self.dimension)

        chunks = self.chunk_store.list_unembedded(job.repository_id)
        job.total_chunks = len(chunks)
        job.processed_chunks = 0
        job.failed_chunks = 0
        if not chunks:
            job.progress = 100.0
            job.mark_completed()
            self.job_store.save(job)
            return
        self.job_store.save(job)

        for start in range(0, len(chunks), self.batch_size):
            if self._stop_event.is_set():
                raise OperationCancelledError("embedding pipeline is stopping")
            batch = chunks[start:start + self.batch_size]
            processed, failed = self._process_batch(job, batch)
            job.processed_chunks += processed
            job.failed_chunks += failed
            job.progress = (job.processed_chunks + job.failed_chunks) * 100.0 / job.total_chunks
            self.job_store.save(job)

        if job.processed_chunks == 0 and job.failed_chunks > 0:
            job.mark_failed(f"all {job.failed_chunks} chunks failed to embed")
        else:
            job.mark_completed()
        self.job_store.save(job)

    def _process_batch(self, job: EmbeddingJob, batch: List[CodeChunk]) -> Tuple[int, int]:
        """Embed and index one batch. Returns (processed, failed)."""
        texts = [chunk.content for chunk in batch]
        try:
            vectors = self.provider.generate_embeddings(texts, self._stop_event)
        except OperationCancelledError:
            raise
        except Exception as e:
            logger.error(f"Job {job.id}: embedding batch of {len(batch)} chunks failed: {e}")
            return 0, len(batch)
        if len(vectors) != len(batch):
            logger.error(f"Job {job.id}: expected {len(batch)} embeddings, got {len(vectors)}")
            return 0, len(batch)

        points = [
            VectorPoint(id=chunk.id, vector=list(vector), payload=chunk_payload(chunk))
            for chunk, vector in zip(batch, vectors)
        ]
        try:
            self.vector_index.upsert(self.collection_name, points)
        except Exception as e:
            logger.error(f"Job {job.id}: vector upsert of {len(points)} points failed: {e}")
            return 0, len(batch)

        processed = failed = 0
        for chunk in batch:
            try:
                self.chunk_store.set_vector_id(chunk.id, chunk.id)
                processed += 1
            except Exception as e:
                logger.error(f"Job {job.id}: failed to record vector id for chunk {chunk.id}: {e}")
                failed += 1
        return processed, failed

    # ------------------------------------------------------------------
    # Queries and maintenance
    # ------------------------------------------------------------------

    def queue_repository(self, repository_id: str, priority: int = JobPriority.NORMAL) -> EmbeddingJob:
        """Create a pending job for the repository.

        Raises:
            AlreadyQueuedError: If the repository already has a pending or processing job
        """
        if not repository_id:
            raise ValidationError("repository id is required")
        if priority not in VALID_PRIORITIES:
            raise ValidationError(f"priority must be one of {VALID_PRIORITIES}")
        job = self.job_store.create_job(
            EmbeddingJob(repository_id=repository_id, priority=priority, max_attempts=self.max_attempts)
        )
        logger.info(f"Queued embedding job {job.id} for {repository_id} (priority {priority})")
        return job

    def queue_all_repositories(self, priority: int = JobPriority.NORMAL) -> List[EmbeddingJob]:
        """Queue every repository that still has unembedded chunks."""
        jobs = []
        for repository_id in self.chunk_store.repositories(unembedded_only=True):
            try:
                jobs.append(self.queue_repository(repository_id, priority))
            except AlreadyQueuedError:
                logger.debug(f"Repository {repository_id} already queued")
        return jobs

    def get_job_status(self, repository_id: str) -> EmbeddingJob:
        job = self.job_store.latest_for_repository(repository_id)
        if job is None:
            raise JobNotFoundError(f"no embedding job for repository {repository_id}")
        return job

    def pipeline_stats(self) -> Dict:
        stats: Dict = dict(self.job_store.count_by_status())
        stats["running"] = self.running
        stats["workers"] = self.workers
        stats["queued"] = self._queue.qsize()
        return stats

    def delete_repository_vectors(self, repository_id: str) -> int:
        """Delete all vectors of a repository and forget their ids. Returns the count."""
        ids = self.chunk_store.vector_ids(repository_id)
        if not ids:
            return 0
        self.vector_index.delete(self.collection_name, ids)
        self.chunk_store.clear_vector_ids(repository_id)
        logger.info(f"Deleted {len(ids)} vectors of {repository_id}")
        return len(ids)


def make_pipeline(cfg: Dict, chunk_store, job_store, vector_index, provider) -> EmbeddingPipeline:
    """Build the pipeline; the collection is sized by the provider's vectors when it knows them."""
    embedding = cfg["embedding"]
    vector_store = cfg["vector_store"]
    dimension = int(vector_store["dimension"])
    if provider.dimension and provider.dimension != dimension:
        logger.warning(
            f"Embedding provider produces {provider.dimension}-dimensional vectors, "
            f"using that instead of the configured {dimension}"
        )
        dimension = int(provider.dimension)
    return EmbeddingPipeline(
        chunk_store,
        job_store,
        vector_index,
        provider,
        collection_name=vector_store["collection_name"],
        dimension=dimension,
        batch_size=int(embedding["batch_size"]),
        workers=int(embedding["workers"]),
        poll_interval=float(embedding["poll_interval"]),
        queue_size=int(embedding.get("queue_size", 100)),
        max_attempts=int(embedding.get("max_attempts", 3)),
        shutdown_timeout=float(embedding.get("shutdown_timeout", 10.0)),
    )
