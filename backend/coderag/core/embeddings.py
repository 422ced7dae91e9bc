"""Embedding providers for chunk and query vectors."""

from __future__ import annotations

import logging
import threading
import time
from typing import Dict, List, Optional

import requests
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_incrementing,
)

from .errors import EmbeddingCountMismatchError, OperationCancelledError, ProviderError

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 128


class EmbeddingProvider:
    """Abstract base class for embedding providers.

    Implementations return exactly one vector per input text, in input order.
    """

    dimension: int = 0

    def generate_embeddings(
        self, texts: List[str], cancel_event: Optional[threading.Event] = None
    ) -> List[List[float]]:
        """Embed multiple texts into vectors."""
        raise NotImplementedError

    def generate_embedding(self, text: str, cancel_event: Optional[threading.Event] = None) -> List[float]:
        """Embed a single text into a vector."""
        return self.generate_embeddings([text], cancel_event=cancel_event)[0]

    def close(self) -> None:
        """Release provider-held resources."""


class RateLimiter:
    """Enforces a fixed minimum spacing between requests."""

    def __init__(self, interval: float):
        self.interval = interval
        self._lock = threading.Lock()
        self._next_slot = 0.0

    def wait(self, cancel_event: threading.Event) -> None:
        with self._lock:
            now = time.monotonic()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self.interval
        delay = slot - time.monotonic()
        if delay > 0 and cancel_event.wait(delay):
            raise OperationCancelledError("embedding request cancelled")


class _TransientError(Exception):
    """Rate limiting or server-side failure worth retrying."""


class HTTPEmbeddingProvider(EmbeddingProvider):
    """Provider speaking the OpenAI-style `/embeddings` protocol.

    Adds an exact-text cache, sub-batching, request spacing and retries
    with linear backoff on top of the raw HTTP call.
    """

    min_interval = 0.1

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str,
        dimension: int = 1024,
        timeout: float = 60,
        max_attempts: int = 3,
        backoff: float = 0.5,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.dimension = dimension
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.session = session or requests.Session()
        self.rate_limiter = RateLimiter(self.min_interval)
        self._cache: Dict[str, List[float]] = {}
        self._cache_lock = threading.Lock()
        self._closed = False

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _payload(self, texts: List[str]) -> Dict:
        return {"model": self.model, "input": texts}

    def generate_embeddings(
        self, texts: List[str], cancel_event: Optional[threading.Event] = None
    ) -> List[List[float]]:
        if self._closed:
            raise ProviderError("embedding provider is closed")
        if not texts:
            raise ValueError("no texts provided")
        cancel_event = cancel_event or threading.Event()

        results: List[Optional[List[float]]] = [None] * len(texts)
        missing: List[int] = []
        with self._cache_lock:
            for i, text in enumerate(texts):
                cached = self._cache.get(text)
                if cached is None:
                    missing.append(i)
                else:
                    results[i] = cached

        for start in range(0, len(missing), MAX_BATCH_SIZE):
            if cancel_event.is_set():
                raise OperationCancelledError("embedding request cancelled")
            indices = missing[start:start + MAX_BATCH_SIZE]
            batch = [texts[i] for i in indices]
            vectors = self._request_with_retry(batch, cancel_event)
            with self._cache_lock:
                for i, vector in zip(indices, vectors):
                    results[i] = vector
                    self._cache[texts[i]] = vector

        logger.debug(f"Embedded {len(texts)} texts ({len(texts) - len(missing)} cached)")
        return results  # type: ignore[return-value]

    def _request_with_retry(self, batch: List[str], cancel_event: threading.Event) -> List[List[float]]:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts) | stop_when_event_set(cancel_event),
            wait=wait_incrementing(start=self.backoff, increment=self.backoff),
            retry=retry_if_exception_type((_TransientError, requests.ConnectionError, requests.Timeout)),
            sleep=cancel_event.wait,
            reraise=True,
            before_sleep=lambda state: logger.warning(
                f"Embedding request failed (attempt {state.attempt_number}/{self.max_attempts}): "
                f"{state.outcome.exception()}"
            ),
        )
        try:
            vectors = retrying(self._request, batch, cancel_event)
        except (_TransientError, requests.RequestException) as e:
            raise ProviderError(f"embedding request failed: {e}") from e
        if cancel_event.is_set():
            raise OperationCancelledError("embedding request cancelled")
        return vectors

    def _request(self, batch: List[str], cancel_event: threading.Event) -> List[List[float]]:
        self.rate_limiter.wait(cancel_event)
        response = self.session.post(
            f"{self.base_url}/embeddings",
            headers=self.headers,
            json=self._payload(batch),
            timeout=self.timeout,
        )
        if response.status_code == 429 or response.status_code >= 500:
            raise _TransientError(f"HTTP {response.status_code}: {response.text[:200]}")
        if response.status_code >= 400:
            raise ProviderError(f"HTTP {response.status_code}: {response.text[:200]}")
        return self._parse(response.json(), len(batch))

    @staticmethod
    def _parse(data: Dict, expected: int) -> List[List[float]]:
        items = data.get("data")
        if not isinstance(items, list):
            raise ProviderError(f"unexpected embedding response: {str(data)[:200]}")
        items = sorted(items, key=lambda item: item.get("index", 0))
        if len(items) != expected:
            raise EmbeddingCountMismatchError(expected, len(items))
        return [item["embedding"] for item in items]

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.session.close()
        with self._cache_lock:
            self._cache.clear()


class OpenAIEmbeddingProvider(HTTPEmbeddingProvider):
    """Any OpenAI-compatible endpoint (OpenAI, LM Studio, vLLM...)."""

    min_interval = 0.1


class VoyageEmbeddingProvider(HTTPEmbeddingProvider):
    """Voyage AI embeddings, limited to 60 requests per minute."""

    min_interval = 1.0

    def __init__(self, api_key: str, model: str = "voyage-code-2", **kwargs) -> None:
        kwargs.setdefault("base_url", "https://api.voyageai.com/v1")
        super().__init__(api_key=api_key, model=model, **kwargs)

    def _payload(self, texts: List[str]) -> Dict:
        return {"model": self.model, "input": texts, "input_type": "document"}


class SentenceTransformersProvider(EmbeddingProvider):
    """Local embeddings using the SentenceTransformers library."""

    def __init__(self, model_name: str) -> None:
        from sentence_transformers import SentenceTransformer  # type: ignore
        self.model = SentenceTransformer(model_name)
        self.dimension = self.model.get_sentence_embedding_dimension()

    def generate_embeddings(
        self, texts: List[str], cancel_event: Optional[threading.Event] = None
    ) -> List[List[float]]:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError("embedding request cancelled")
        arr = self.model.encode(texts, normalize_embeddings=True, show_progress_bar=False)
        return [row.tolist() for row in arr]


def make_embedding_provider(cfg: Dict) -> EmbeddingProvider:
    """Create embedding provider from config.

    Args:
        cfg: Configuration dictionary

    Returns:
        EmbeddingProvider instance

    Raises:
        ValueError: If the provider name is unknown
        SystemExit: If the local backend's dependencies are missing
    """
    embedding = cfg.get("embedding", {})
    provider = str(embedding.get("provider", "openai")).strip().lower()
    dimension = int(cfg.get("vector_store", {}).get("dimension", 1024))
    timeout = float(embedding.get("timeout", 60))

    if provider == "voyage":
        return VoyageEmbeddingProvider(
            api_key=embedding.get("voyage_api_key") or embedding.get("api_key", ""),
            model=embedding.get("model", "voyage-code-2"),
            dimension=dimension,
            timeout=timeout,
        )
    if provider == "openai":
        return OpenAIEmbeddingProvider(
            api_key=embedding.get("api_key", ""),
            model=embedding.get("model", ""),
            base_url=embedding.get("base_url", "https://api.openai.com/v1"),
            dimension=dimension,
            timeout=timeout,
        )
    if provider == "local":
        model_name = embedding.get("sentence_transformers_model", "all-MiniLM-L6-v2")
        try:
            return SentenceTransformersProvider(model_name)
        except ImportError as e:
            raise SystemExit(
                "sentence-transformers could not be loaded. "
                "Run: pip install -U sentence-transformers"
            ) from e
    raise ValueError(f"unknown embedding provider: {provider!r}")
