"""Construction of the long-lived service objects."""

from __future__ import annotations

import dataclasses
import logging
from typing import Dict, Optional

from .chat import ChatClient, ChatOrchestrator, make_chat_client, make_orchestrator
from .core.chunking import Chunker, make_chunker
from .core.embeddings import EmbeddingProvider, make_embedding_provider
from .db import ChunkStore, JobStore, SessionStore, init_db, make_engine, make_session_factory
from .indexing import EmbeddingPipeline, make_pipeline
from .search import LexicalIndex, SearchEngine
from .storage import VectorIndex, make_vector_index

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class Services:
    config: Dict
    chunker: Chunker
    chunk_store: ChunkStore
    job_store: JobStore
    session_store: SessionStore
    vector_index: VectorIndex
    provider: EmbeddingProvider
    lexical_index: LexicalIndex
    search_engine: SearchEngine
    pipeline: EmbeddingPipeline
    chat_client: ChatClient
    orchestrator: ChatOrchestrator

    def close(self) -> None:
        self.pipeline.stop()
        self.search_engine.close()
        self.provider.close()


def build_services(
    cfg: Dict,
    vector_index: Optional[VectorIndex] = None,
    provider: Optional[EmbeddingProvider] = None,
    chat_client: Optional[ChatClient] = None,
) -> Services:
    """Wire every service from configuration.

    The vector index, embedding provider and chat client can be supplied
    to replace the configured external backends.
    """
    engine = make_engine(cfg["database_url"])
    init_db(engine)
    session_factory = make_session_factory(engine)

    storage = cfg["storage"]
    chunk_store = ChunkStore(
        session_factory,
        batch_size=int(storage["insert_batch_size"]),
        attempts=int(storage["insert_attempts"]),
        min_success_rate=float(storage["min_insert_success_rate"]),
    )
    job_store = JobStore(session_factory)
    session_store = SessionStore(session_factory)

    vector_index = vector_index or make_vector_index(cfg)
    provider = provider or make_embedding_provider(cfg)
    chat_client = chat_client or make_chat_client(cfg)

    lexical_index = LexicalIndex(chunk_store)
    search_engine = SearchEngine(
        chunk_store,
        lexical_index,
        vector_index,
        provider,
        collection_name=cfg["vector_store"]["collection_name"],
    )
    pipeline = make_pipeline(cfg, chunk_store, job_store, vector_index, provider)
    orchestrator = make_orchestrator(cfg, session_store, search_engine, chat_client)

    logger.info(
        f"Services ready: embedding provider {cfg['embedding']['provider']}, "
        f"collection {cfg['vector_store']['collection_name']}"
    )
    return Services(
        config=cfg,
        chunker=make_chunker(cfg),
        chunk_store=chunk_store,
        job_store=job_store,
        session_store=session_store,
        vector_index=vector_index,
        provider=provider,
        lexical_index=lexical_index,
        search_engine=search_engine,
        pipeline=pipeline,
        chat_client=chat_client,
        orchestrator=orchestrator,
    )
