"""Qdrant vector database backend."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from qdrant_client import QdrantClient
from qdrant_client.http.exceptions import UnexpectedResponse
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PayloadSchemaType,
    PointIdsList,
    PointStruct,
    VectorParams,
)

from ..core.errors import CollectionMissingError, StorageError
from .base import VectorHit, VectorIndex, VectorPoint

logger = logging.getLogger(__name__)

REPOSITORY_FIELD = "repositoryId"


class QdrantVectorIndex(VectorIndex):

    upsert_batch_size = 100

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6333,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        repo_filter: bool = True,
        client: Optional[QdrantClient] = None,
    ):
        self.repo_filter = repo_filter
        if client is not None:
            self.client = client
        elif url:
            self.client = QdrantClient(url=url, api_key=api_key or None)
        else:
            self.client = QdrantClient(host=host, port=port, api_key=api_key or None)

    def ensure_collection(self, name: str, dimension: int) -> None:
        if self.client.collection_exists(collection_name=name):
            info = self.client.get_collection(collection_name=name)
            existing_dim = info.config.params.vectors.size
            if existing_dim != dimension:
                raise StorageError(
                    f"Collection '{name}' exists with dimension {existing_dim}, "
                    f"but vectors have dimension {dimension}. Please delete the collection and re-embed."
                )
            return
        self.client.create_collection(
            collection_name=name,
            vectors_config=VectorParams(size=dimension, distance=Distance.COSINE),
        )
        self.client.create_payload_index(
            collection_name=name,
            field_name=REPOSITORY_FIELD,
            field_schema=PayloadSchemaType.KEYWORD,
        )
        logger.info(f"Created collection '{name}' (dimension {dimension})")

    def upsert(self, name: str, points: List[VectorPoint]) -> None:
        if not points:
            return
        structs = [PointStruct(id=p.id, vector=p.vector, payload=p.payload) for p in points]
        total_batches = (len(structs) + self.upsert_batch_size - 1) // self.upsert_batch_size
        for i in range(0, len(structs), self.upsert_batch_size):
            batch = structs[i:i + self.upsert_batch_size]
            batch_num = i // self.upsert_batch_size + 1
            try:
                self.client.upsert(collection_name=name, points=batch)
                logger.debug(f"Uploaded batch {batch_num}/{total_batches}")
            except Exception as e:
                raise StorageError(
                    f"Failed to upsert batch {batch_num}/{total_batches} "
                    f"(points {i}-{i + len(batch)}): {e}"
                ) from e

    def search(
        self,
        name: str,
        vector: List[float],
        limit: int,
        repository_id: Optional[str] = None,
    ) -> List[VectorHit]:
        """Search using Qdrant's vector search."""
        query_filter = None
        if repository_id and self.repo_filter:
            query_filter = Filter(
                must=[FieldCondition(key=REPOSITORY_FIELD, match=MatchValue(value=repository_id))]
            )

        if not self.client.collection_exists(collection_name=name):
            raise CollectionMissingError(f"collection '{name}' not found")
        try:
            results = self.client.query_points(
                collection_name=name,
                query=vector,
                limit=limit,
                query_filter=query_filter,
                with_payload=True,
                with_vectors=False,
            )
        except UnexpectedResponse as e:
            # dropped between the existence check and the query
            if e.status_code == 404:
                raise CollectionMissingError(f"collection '{name}' not found") from e
            logger.error(f"Error searching in collection '{name}': {e}")
            raise StorageError(f"vector search in '{name}' failed: {e}") from e
        except ValueError as e:
            logger.error(f"Error searching in collection '{name}': {e}")
            raise StorageError(f"vector search in '{name}' failed: {e}") from e

        return [
            VectorHit(id=str(point.id), score=point.score, payload=point.payload or {})
            for point in results.points
        ]

    def delete(self, name: str, ids: List[str]) -> None:
        if not ids:
            return
        try:
            self.client.delete(collection_name=name, points_selector=PointIdsList(points=ids))
        except Exception as e:
            logger.error(f"Error deleting {len(ids)} points from '{name}': {e}")
            raise StorageError(f"failed to delete points from '{name}': {e}") from e

    def count(self, name: str) -> int:
        if not self.client.collection_exists(collection_name=name):
            return 0
        return self.client.count(collection_name=name).count


def make_vector_index(cfg: Dict) -> VectorIndex:
    vector_store_cfg = cfg.get("vector_store", {})
    qdrant_cfg = vector_store_cfg.get("qdrant", {})
    return QdrantVectorIndex(
        host=qdrant_cfg.get("host", "localhost"),
        port=qdrant_cfg.get("port", 6333),
        url=qdrant_cfg.get("url") or None,
        api_key=qdrant_cfg.get("api_key") or None,
        repo_filter=vector_store_cfg.get("repo_filter", True),
    )
