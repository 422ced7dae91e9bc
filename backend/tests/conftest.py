import copy
import math
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional

import pytest

from coderag.chat import ChatOrchestrator, LLMResponse, StreamDelta
from coderag.config import DEFAULT_CONFIG
from coderag.core.chunking import LineWindowChunker
from coderag.core.embeddings import EmbeddingProvider
from coderag.core.errors import CollectionMissingError, LLMError, ProviderError, StorageError
from coderag.core.models import FileRecord
from coderag.db import ChunkStore, JobStore, SessionStore, init_db, make_engine, make_session_factory
from coderag.indexing import EmbeddingPipeline
from coderag.search import LexicalIndex, SearchEngine
from coderag.storage import VectorHit, VectorIndex, VectorPoint

REPO = "repo-1"
COLLECTION = "test-chunks"


# ── Test doubles ──────────────────────────────────────


class InMemoryVectorIndex(VectorIndex):
    """Cosine-similarity index kept in a dict."""

    def __init__(self, repo_filter: bool = True):
        self.repo_filter = repo_filter
        self.collections: Dict[str, Dict] = {}
        self.fail_ensure = False
        self.fail_upsert = False
        self.delete_calls: List[List[str]] = []

    def ensure_collection(self, name: str, dimension: int) -> None:
        if self.fail_ensure:
            raise StorageError("vector store unavailable")
        self.collections.setdefault(name, {"dimension": dimension, "points": {}})

    def upsert(self, name: str, points: List[VectorPoint]) -> None:
        if self.fail_upsert:
            raise StorageError("upsert rejected")
        if name not in self.collections:
            raise CollectionMissingError(name)
        for p in points:
            self.collections[name]["points"][p.id] = p

    def search(self, name, vector, limit, repository_id=None) -> List[VectorHit]:
        if name not in self.collections:
            raise CollectionMissingError(name)
        hits = []
        for p in self.collections[name]["points"].values():
            if repository_id and self.repo_filter and p.payload.get("repositoryId") != repository_id:
                continue
            hits.append(VectorHit(id=p.id, score=_cosine(vector, p.vector), payload=p.payload))
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:limit]

    def delete(self, name: str, ids: List[str]) -> None:
        self.delete_calls.append(list(ids))
        points = self.collections.get(name, {}).get("points", {})
        for i in ids:
            points.pop(i, None)

    def count(self, name: str) -> int:
        return len(self.collections.get(name, {}).get("points", {}))


def _cosine(a: List[float], b: List[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0 or nb == 0:
        return 0.0
    return dot / (na * nb)


class StubEmbeddingProvider(EmbeddingProvider):
    """Returns the same vector for every text unless vector_fn says otherwise."""

    dimension = 4

    def __init__(
        self,
        vector_fn: Optional[Callable[[str], List[float]]] = None,
        fail_calls: Iterable[int] = (),
        short_calls: Iterable[int] = (),
    ):
        self.vector_fn = vector_fn or (lambda text: [1.0, 0.0, 0.0, 0.0])
        self.fail_calls = set(fail_calls)
        self.short_calls = set(short_calls)
        self.calls: List[List[str]] = []
        self.closed = False

    def generate_embeddings(self, texts, cancel_event=None):
        self.calls.append(list(texts))
        n = len(self.calls)
        if n in self.fail_calls:
            raise ProviderError(f"call {n} failed")
        vectors = [self.vector_fn(t) for t in texts]
        if n in self.short_calls:
            return vectors[:-1]
        return vectors

    def close(self):
        self.closed = True


class StubChatClient:
    def __init__(
        self,
        answer: str = "It returns the input.",
        usage: Optional[Dict[str, int]] = None,
        fail: bool = False,
        fail_stream_after: Optional[int] = None,
        delta_size: int = 5,
        delay: float = 0.0,
    ):
        self.answer = answer
        self.usage = usage
        self.fail = fail
        self.fail_stream_after = fail_stream_after
        self.delta_size = delta_size
        self.delay = delay
        self.timeouts: List[Optional[float]] = []
        self.requests: List[List[Dict[str, str]]] = []

    def chat(self, messages, timeout=None):
        self.requests.append(messages)
        self.timeouts.append(timeout)
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise LLMError("model unavailable")
        return LLMResponse(content=self.answer, finish_reason="stop", usage=self.usage, time_taken=0.01)

    def chat_stream(self, messages, cancel_event=None):
        self.requests.append(messages)
        if self.fail:
            raise LLMError("model unavailable")
        for i in range(0, len(self.answer), self.delta_size):
            if self.fail_stream_after is not None and i // self.delta_size >= self.fail_stream_after:
                raise LLMError("stream broke")
            yield StreamDelta(content=self.answer[i:i + self.delta_size])
        if self.usage:
            yield StreamDelta(usage=self.usage)


# ── Sources ───────────────────────────────────────────


def make_go_source(lines: int = 200) -> str:
    """A Go file with HandleAlpha near the top and ProcessOmega near the bottom."""
    out = [f"// filler line {n}" for n in range(1, lines + 1)]
    out[0] = "package main"
    out[2] = 'import "fmt"'
    out[19:23] = [
        "func HandleAlpha(w int) int {",
        "    if w > 0 {",
        "        return w",
        "    }",
    ]
    out[169:173] = [
        "func ProcessOmega(x int) int {",
        '    fmt.Println("omega")',
        "    return x * 2",
        "}",
    ]
    return "\n".join(out[:lines])


# ── Fixtures ──────────────────────────────────────────


@pytest.fixture
def cfg(tmp_path):
    c = copy.deepcopy(DEFAULT_CONFIG)
    c["database_url"] = f"sqlite:///{tmp_path / 'coderag.db'}"
    c["vector_store"]["collection_name"] = COLLECTION
    c["embedding"]["poll_interval"] = 0.05
    c["embedding"]["shutdown_timeout"] = 5.0
    c["logging"]["format"] = "text"
    return c


@pytest.fixture
def session_factory(cfg):
    engine = make_engine(cfg["database_url"])
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def chunk_store(session_factory):
    return ChunkStore(session_factory, retry_delay=0)


@pytest.fixture
def job_store(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def session_store(session_factory):
    return SessionStore(session_factory)


@pytest.fixture
def vector_index():
    return InMemoryVectorIndex()


@pytest.fixture
def provider():
    return StubEmbeddingProvider()


@pytest.fixture
def chunker():
    return LineWindowChunker()


@pytest.fixture
def lexical_index(chunk_store):
    return LexicalIndex(chunk_store)


@pytest.fixture
def search_engine(chunk_store, lexical_index, vector_index, provider):
    engine = SearchEngine(chunk_store, lexical_index, vector_index, provider, collection_name=COLLECTION)
    yield engine
    engine.close()


@pytest.fixture
def pipeline(chunk_store, job_store, vector_index, provider):
    p = EmbeddingPipeline(
        chunk_store,
        job_store,
        vector_index,
        provider,
        collection_name=COLLECTION,
        dimension=4,
        poll_interval=0.05,
        shutdown_timeout=5.0,
    )
    yield p
    p.stop()


@pytest.fixture
def chat_client():
    return StubChatClient(usage={"prompt_tokens": 30, "completion_tokens": 12, "total_tokens": 42})


@pytest.fixture
def orchestrator(session_store, search_engine, chat_client):
    return ChatOrchestrator(session_store, search_engine, chat_client, stream_timeout=10)


@pytest.fixture
def go_file():
    return FileRecord(path="cmd/server/main.go", content=make_go_source(), language="go")


@pytest.fixture
def stored_chunks(chunk_store, chunker, go_file):
    """The Go file chunked and stored under REPO."""
    chunks = chunker.chunk(go_file, repository_id=REPO)
    chunk_store.insert_chunks(chunks)
    return chunks


@pytest.fixture
def embedded_chunks(stored_chunks, pipeline, job_store):
    """stored_chunks with their vectors written by one pipeline run."""
    job = pipeline.queue_repository(REPO)
    pipeline.process_job(job)
    return stored_chunks


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
    done = threading.Event()
    deadline = timeout
    while deadline > 0:
        if predicate():
            return True
        done.wait(interval)
        deadline -= interval
    return predicate()
