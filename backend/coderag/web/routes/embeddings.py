"""Embedding pipeline and ingestion routes."""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from ...core.errors import AlreadyQueuedError, CodeRagError
from ...core.models import JobPriority
from ...indexing import ingest_directory
from ...services import Services
from ..deps import get_services
from ..schemas import (
    DeleteVectorsResponse,
    EmbedRequest,
    IngestRequest,
    JobResponse,
    QueueAllResponse,
    job_response,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/repositories", tags=["embeddings"])


def ingest_task(services: Services, root: Path, repository_id: str, embed: bool) -> None:
    """Background task: ingest a directory, then queue its embedding."""
    try:
        summary = ingest_directory(
            root,
            repository_id,
            services.config,
            services.chunk_store,
            chunker=services.chunker,
            lexical_index=services.lexical_index,
        )
    except (CodeRagError, OSError) as e:
        logger.error(f"Ingestion of {root} into {repository_id} failed: {e}")
        return
    if embed and summary.stored:
        try:
            services.pipeline.queue_repository(repository_id)
        except AlreadyQueuedError:
            logger.info(f"Repository {repository_id} already has an embedding job")


@router.post("/{repository_id}/ingest", status_code=202)
def ingest(
    repository_id: str,
    request: IngestRequest,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
):
    root = Path(request.path)
    if not root.is_dir():
        raise HTTPException(status_code=400, detail="Path is not a directory")

    background_tasks.add_task(ingest_task, services, root, repository_id, request.embed)
    return {
        "message": f"Ingestion started for '{root}'",
        "repository_id": repository_id,
    }


@router.post("/{repository_id}/embeddings", response_model=JobResponse, status_code=202)
def embed_repository(
    repository_id: str,
    request: Optional[EmbedRequest] = None,
    services: Services = Depends(get_services),
):
    priority = request.priority if request else JobPriority.NORMAL
    return job_response(services.pipeline.queue_repository(repository_id, priority))


@router.get("/{repository_id}/embeddings", response_model=JobResponse)
def embedding_status(repository_id: str, services: Services = Depends(get_services)):
    return job_response(services.pipeline.get_job_status(repository_id))


@router.delete("/{repository_id}/embeddings", response_model=DeleteVectorsResponse)
def delete_embeddings(repository_id: str, services: Services = Depends(get_services)):
    deleted = services.pipeline.delete_repository_vectors(repository_id)
    return DeleteVectorsResponse(repository_id=repository_id, deleted=deleted)


@router.post("/embeddings/queue-all", response_model=QueueAllResponse, status_code=202)
def queue_all(services: Services = Depends(get_services)):
    jobs = services.pipeline.queue_all_repositories()
    return QueueAllResponse(queued=len(jobs), jobs=[job_response(j) for j in jobs])


@router.get("/embeddings/stats")
def pipeline_stats(services: Services = Depends(get_services)):
    return services.pipeline.pipeline_stats()
