"""Tests for the HTTP embedding providers."""

import threading

import pytest
import requests

from coderag.core.embeddings import (
    MAX_BATCH_SIZE,
    HTTPEmbeddingProvider,
    OpenAIEmbeddingProvider,
    VoyageEmbeddingProvider,
    make_embedding_provider,
)
from coderag.core.errors import EmbeddingCountMismatchError, OperationCancelledError, ProviderError


class FakeResponse:
    def __init__(self, status_code=200, data=None, text=""):
        self.status_code = status_code
        self._data = data
        self.text = text

    def json(self):
        return self._data


class FakeSession:
    """Answers each POST with the next scripted response, or echoes embeddings."""

    def __init__(self, script=None):
        self.script = list(script or [])
        self.posts = []
        self.closed = False

    def post(self, url, headers=None, json=None, timeout=None):
        self.posts.append({"url": url, "headers": headers, "json": json})
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        texts = json["input"]
        # reversed to check the provider re-sorts by index
        data = [{"index": i, "embedding": [float(len(t)), float(i)]} for i, t in enumerate(texts)]
        return FakeResponse(data={"data": list(reversed(data))})

    def close(self):
        self.closed = True


def _provider(session, cls=HTTPEmbeddingProvider, **kwargs):
    kwargs.setdefault("backoff", 0)
    p = cls(api_key="secret", model="test-embed", base_url="http://embed.local/v1/", dimension=2, session=session, **kwargs)
    p.rate_limiter.interval = 0
    return p


class TestGenerateEmbeddings:
    def test_order_and_request_shape(self):
        session = FakeSession()
        vectors = _provider(session).generate_embeddings(["a", "bbb", "cc"])
        assert vectors == [[1.0, 0.0], [3.0, 1.0], [2.0, 2.0]]
        post = session.posts[0]
        assert post["url"] == "http://embed.local/v1/embeddings"
        assert post["headers"]["Authorization"] == "Bearer secret"
        assert post["json"] == {"model": "test-embed", "input": ["a", "bbb", "cc"]}

    def test_single(self):
        assert _provider(FakeSession()).generate_embedding("abcd") == [4.0, 0.0]

    def test_cache_skips_known_texts(self):
        session = FakeSession()
        p = _provider(session)
        p.generate_embeddings(["a", "b"])
        vectors = p.generate_embeddings(["b", "c", "a"])
        assert len(session.posts) == 2
        assert session.posts[1]["json"]["input"] == ["c"]
        assert vectors[0] == [1.0, 1.0]
        assert vectors[2] == [1.0, 0.0]

    def test_sub_batches(self):
        session = FakeSession()
        texts = [f"text {i}" for i in range(MAX_BATCH_SIZE + 5)]
        vectors = _provider(session).generate_embeddings(texts)
        assert len(vectors) == len(texts)
        assert [len(p["json"]["input"]) for p in session.posts] == [MAX_BATCH_SIZE, 5]

    def test_empty_input(self):
        with pytest.raises(ValueError):
            _provider(FakeSession()).generate_embeddings([])

    def test_count_mismatch(self):
        session = FakeSession([FakeResponse(data={"data": [{"index": 0, "embedding": [1.0, 0.0]}]})])
        with pytest.raises(EmbeddingCountMismatchError):
            _provider(session).generate_embeddings(["a", "b"])

    def test_malformed_response(self):
        session = FakeSession([FakeResponse(data={"error": "nope"})])
        with pytest.raises(ProviderError):
            _provider(session).generate_embeddings(["a"])


class TestRetries:
    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_transient_status_retried(self, status):
        session = FakeSession([FakeResponse(status, text="slow down")])
        assert _provider(session).generate_embeddings(["a"]) == [[1.0, 0.0]]
        assert len(session.posts) == 2

    def test_connection_error_retried(self):
        session = FakeSession([requests.ConnectionError("reset")])
        assert _provider(session).generate_embeddings(["a"]) == [[1.0, 0.0]]

    def test_gives_up_after_max_attempts(self):
        session = FakeSession([FakeResponse(500, text="boom")] * 3)
        with pytest.raises(ProviderError):
            _provider(session).generate_embeddings(["a"])
        assert len(session.posts) == 3

    def test_client_error_not_retried(self):
        session = FakeSession([FakeResponse(401, text="bad key")])
        with pytest.raises(ProviderError) as exc:
            _provider(session).generate_embeddings(["a"])
        assert "401" in str(exc.value)
        assert len(session.posts) == 1

    def test_cancelled_before_request(self):
        cancel = threading.Event()
        cancel.set()
        session = FakeSession()
        with pytest.raises(OperationCancelledError):
            _provider(session).generate_embeddings(["a"], cancel)
        assert session.posts == []


class TestLifecycle:
    def test_close(self):
        session = FakeSession()
        p = _provider(session)
        p.generate_embeddings(["a"])
        p.close()
        p.close()
        assert session.closed
        with pytest.raises(ProviderError):
            p.generate_embeddings(["a"])

    def test_voyage_payload(self):
        session = FakeSession()
        _provider(session, cls=VoyageEmbeddingProvider).generate_embeddings(["a"])
        assert session.posts[0]["json"]["input_type"] == "document"


class TestFactory:
    def test_openai(self):
        cfg = {
            "embedding": {"provider": "OpenAI", "api_key": "k", "model": "m", "base_url": "http://x/v1"},
            "vector_store": {"dimension": 8},
        }
        p = make_embedding_provider(cfg)
        assert isinstance(p, OpenAIEmbeddingProvider)
        assert p.dimension == 8
        assert p.base_url == "http://x/v1"

    def test_voyage_uses_its_own_key(self):
        p = make_embedding_provider({"embedding": {"provider": "voyage", "voyage_api_key": "vk"}})
        assert isinstance(p, VoyageEmbeddingProvider)
        assert p.api_key == "vk"
        assert p.base_url == "https://api.voyageai.com/v1"

    def test_unknown(self):
        with pytest.raises(ValueError):
            make_embedding_provider({"embedding": {"provider": "carrier-pigeon"}})
