"""Tests for the background embedding pipeline."""

import pytest

from coderag.core.errors import AlreadyQueuedError, JobNotFoundError, ValidationError
from coderag.core.models import CodeChunk, JobPriority, JobStatus
from coderag.indexing import EmbeddingPipeline, chunk_payload, make_pipeline

from conftest import COLLECTION, REPO, StubEmbeddingProvider, wait_for


@pytest.fixture
def make(chunk_store, job_store, vector_index):
    created = []

    def _make(provider=None, **kwargs):
        kwargs.setdefault("collection_name", COLLECTION)
        kwargs.setdefault("dimension", 4)
        kwargs.setdefault("poll_interval", 0.05)
        kwargs.setdefault("shutdown_timeout", 5.0)
        p = EmbeddingPipeline(chunk_store, job_store, vector_index, provider or StubEmbeddingProvider(), **kwargs)
        created.append(p)
        return p

    yield _make
    for p in created:
        p.stop()


class TestQueue:
    def test_queue_repository(self, pipeline, job_store):
        job = pipeline.queue_repository(REPO, JobPriority.HIGH)
        assert job.status == JobStatus.PENDING
        assert job.priority == JobPriority.HIGH
        assert job_store.get(job.id).repository_id == REPO

    def test_second_queue_rejected_while_active(self, pipeline):
        pipeline.queue_repository(REPO)
        with pytest.raises(AlreadyQueuedError):
            pipeline.queue_repository(REPO)

    @pytest.mark.parametrize("repository_id,priority", [("", JobPriority.NORMAL), (REPO, 0), (REPO, 4)])
    def test_invalid_arguments(self, pipeline, repository_id, priority):
        with pytest.raises(ValidationError):
            pipeline.queue_repository(repository_id, priority)

    def test_queue_all_skips_embedded_and_queued(self, pipeline, chunk_store, stored_chunks):
        done = CodeChunk(repository_id="done", file_path="a.go", language="go", start_line=1, end_line=10, content="x")
        fresh = CodeChunk(repository_id="fresh", file_path="b.go", language="go", start_line=1, end_line=10, content="y")
        chunk_store.insert_chunks([done, fresh])
        chunk_store.set_vector_id(done.id, done.id)
        pipeline.queue_repository(REPO)

        jobs = pipeline.queue_all_repositories()
        assert [j.repository_id for j in jobs] == ["fresh"]

    def test_job_status(self, pipeline):
        with pytest.raises(JobNotFoundError):
            pipeline.get_job_status(REPO)
        job = pipeline.queue_repository(REPO)
        assert pipeline.get_job_status(REPO).id == job.id


class TestProcessJob:
    def test_embeds_all_chunks(self, pipeline, job_store, chunk_store, vector_index, provider, stored_chunks):
        job = pipeline.process_job(pipeline.queue_repository(REPO))
        assert job.status == JobStatus.COMPLETED
        assert (job.total_chunks, job.processed_chunks, job.failed_chunks) == (2, 2, 0)
        assert job.progress == 100.0
        assert job_store.get(job.id).status == JobStatus.COMPLETED
        assert chunk_store.list_unembedded(REPO) == []
        assert vector_index.count(COLLECTION) == 2
        assert provider.calls == [[c.content for c in stored_chunks]]

    def test_vector_id_is_chunk_id_and_payload_carries_metadata(self, pipeline, chunk_store, vector_index, stored_chunks):
        pipeline.process_job(pipeline.queue_repository(REPO))
        first = stored_chunks[0]
        assert chunk_store.get_chunk(first.id).vector_id == first.id
        point = vector_index.collections[COLLECTION]["points"][first.id]
        assert point.payload == chunk_payload(first)
        assert point.payload["repositoryId"] == REPO
        assert point.payload["functions"] == ["HandleAlpha"]

    def test_nothing_to_embed(self, pipeline, provider):
        job = pipeline.process_job(pipeline.queue_repository(REPO))
        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100.0
        assert job.total_chunks == 0
        assert provider.calls == []

    def test_rerun_only_embeds_new_chunks(self, pipeline, provider, embedded_chunks):
        job = pipeline.process_job(pipeline.queue_repository(REPO))
        assert job.total_chunks == 0
        assert len(provider.calls) == 1

    def test_partial_batch_failure(self, make, chunk_store, stored_chunks):
        p = make(StubEmbeddingProvider(fail_calls={1}), batch_size=1)
        job = p.process_job(p.queue_repository(REPO))
        assert job.status == JobStatus.COMPLETED
        assert (job.processed_chunks, job.failed_chunks) == (1, 1)
        assert job.progress == 100.0
        assert [c.id for c in chunk_store.list_unembedded(REPO)] == [stored_chunks[0].id]

    def test_all_batches_fail(self, make, stored_chunks):
        p = make(StubEmbeddingProvider(fail_calls={1, 2}), batch_size=1)
        job = p.process_job(p.queue_repository(REPO))
        assert job.status == JobStatus.FAILED
        assert job.error_message

    def test_count_mismatch_fails_batch(self, make, chunk_store, vector_index, stored_chunks):
        p = make(StubEmbeddingProvider(short_calls={1}))
        job = p.process_job(p.queue_repository(REPO))
        assert job.status == JobStatus.FAILED
        assert job.failed_chunks == 2
        assert vector_index.count(COLLECTION) == 0
        assert len(chunk_store.list_unembedded(REPO)) == 2

    def test_upsert_failure_fails_batch(self, pipeline, vector_index, chunk_store, stored_chunks):
        vector_index.fail_upsert = True
        job = pipeline.process_job(pipeline.queue_repository(REPO))
        assert job.status == JobStatus.FAILED
        assert len(chunk_store.list_unembedded(REPO)) == 2

    def test_job_level_error_retries_then_fails(self, pipeline, vector_index, job_store, stored_chunks):
        vector_index.fail_ensure = True
        job = pipeline.queue_repository(REPO)
        for attempt in (1, 2):
            job = pipeline.process_job(job)
            assert job.status == JobStatus.PENDING
            assert job.attempts == attempt
        job = pipeline.process_job(job)
        assert job.status == JobStatus.FAILED
        assert job.attempts == 3
        assert "unavailable" in job_store.get(job.id).error_message

    def test_retry_succeeds_after_transient_error(self, pipeline, vector_index, stored_chunks):
        vector_index.fail_ensure = True
        job = pipeline.process_job(pipeline.queue_repository(REPO))
        assert job.status == JobStatus.PENDING
        vector_index.fail_ensure = False
        job = pipeline.process_job(job)
        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 1


class TestScheduling:
    def test_schedule_pending_dispatches_by_priority(self, make, job_store):
        p = make(queue_size=2)
        low = p.queue_repository("a", JobPriority.LOW)
        high = p.queue_repository("b", JobPriority.HIGH)
        normal = p.queue_repository("c")
        assert p.schedule_pending() == 2
        assert job_store.get(high.id).status == JobStatus.PROCESSING
        assert job_store.get(normal.id).status == JobStatus.PROCESSING
        assert job_store.get(low.id).status == JobStatus.PENDING
        assert p.pipeline_stats()["queued"] == 2

    def test_stop_returns_undispatched_jobs_to_pending(self, make, job_store):
        p = make(workers=0, poll_interval=60)
        job = p.queue_repository(REPO)
        assert p.schedule_pending() == 1
        p.start()
        p.stop()
        assert job_store.get(job.id).status == JobStatus.PENDING
        assert p.schedule_pending() == 0

    def test_background_run(self, pipeline, job_store, chunk_store, stored_chunks):
        job = pipeline.queue_repository(REPO)
        pipeline.start()
        assert pipeline.running
        assert wait_for(lambda: job_store.get(job.id).status == JobStatus.COMPLETED)
        assert chunk_store.list_unembedded(REPO) == []
        pipeline.stop()
        assert not pipeline.running

    def test_start_and_stop_are_idempotent(self, pipeline):
        pipeline.stop()
        pipeline.start()
        pipeline.start()
        assert len(pipeline._threads) == 1 + pipeline.workers
        pipeline.stop()
        pipeline.stop()
        assert not pipeline.running

    def test_shutdown_mid_job_returns_it_to_pending(self, make, job_store, stored_chunks):
        p = make(batch_size=1)
        job = p.queue_repository(REPO)
        p._stop_event.set()
        job = p.process_job(job)
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
        assert job_store.get(job.id).status == JobStatus.PENDING


class TestMaintenance:
    def test_pipeline_stats(self, pipeline, embedded_chunks):
        pipeline.queue_repository("other")
        stats = pipeline.pipeline_stats()
        assert stats["completed"] == 1
        assert stats["pending"] == 1
        assert stats["running"] is False
        assert stats["workers"] == 3

    def test_delete_repository_vectors(self, pipeline, vector_index, chunk_store, embedded_chunks):
        assert pipeline.delete_repository_vectors(REPO) == 2
        assert vector_index.count(COLLECTION) == 0
        assert len(chunk_store.list_unembedded(REPO)) == 2
        assert pipeline.delete_repository_vectors(REPO) == 0
        assert len(vector_index.delete_calls) == 1


def test_make_pipeline_reads_config(cfg, chunk_store, job_store, vector_index, provider):
    cfg["embedding"]["workers"] = 5
    cfg["embedding"]["batch_size"] = 7
    p = make_pipeline(cfg, chunk_store, job_store, vector_index, provider)
    assert (p.workers, p.batch_size, p.collection_name) == (5, 7, COLLECTION)
    assert p.poll_interval == 0.05


def test_make_pipeline_sizes_collection_from_provider(cfg, chunk_store, job_store, vector_index, stored_chunks):
    class LocalModel(StubEmbeddingProvider):
        dimension = 384

    assert cfg["vector_store"]["dimension"] == 1024
    p = make_pipeline(cfg, chunk_store, job_store, vector_index, LocalModel())
    assert p.dimension == 384
    p.process_job(p.queue_repository(REPO))
    assert vector_index.collections[COLLECTION]["dimension"] == 384


def test_make_pipeline_falls_back_to_configured_dimension(cfg, chunk_store, job_store, vector_index):
    class Unsized(StubEmbeddingProvider):
        dimension = 0

    assert make_pipeline(cfg, chunk_store, job_store, vector_index, Unsized()).dimension == 1024
