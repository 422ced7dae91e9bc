"""Retrieval-augmented chat over an indexed repository."""

from __future__ import annotations

import dataclasses
import logging
import queue
import threading
import time
from typing import Callable, Dict, Iterator, List, Optional

from ..core.errors import LLMError, OperationCancelledError, RequestTimeoutError
from ..core.models import DEFAULT_TITLE, ChatMessage, Conversation, RetrievedChunk, Role
from .llm_client import build_messages
from .prompts import SYSTEM_PROMPT, build_prompt, estimate_tokens, format_code_snippet

logger = logging.getLogger(__name__)

STREAM_QUEUE_SIZE = 100


@dataclasses.dataclass
class ChatResult:
    conversation: Conversation
    answer: str
    context: List[RetrievedChunk]
    tokens_used: int


@dataclasses.dataclass
class ChatEvent:
    """One streamed event: "content", then "done" or "error"."""

    type: str
    delta: str = ""
    content: str = ""
    conversation: Optional[Conversation] = None
    error: Optional[str] = None


class ChatStream:
    """Iterable of ChatEvents fed by a producer thread through a bounded queue.

    Iteration ends after a "done" or "error" event. cancel() stops the
    producer at its next step.
    """

    def __init__(self, produce: Callable[["ChatStream"], None], timeout: float):
        self.timeout = timeout
        self.cancel_event = threading.Event()
        self.deadline = time.monotonic() + timeout
        self._queue: "queue.Queue[ChatEvent]" = queue.Queue(maxsize=STREAM_QUEUE_SIZE)
        self._produce = produce
        self._thread = threading.Thread(target=self._run, name="chat-stream", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        try:
            self._produce(self)
        except OperationCancelledError:
            logger.info("Chat stream cancelled")
        except Exception as e:
            logger.exception("Chat stream failed")
            self.emit(ChatEvent(type="error", error=str(e)))

    def check(self) -> None:
        """Raise if the stream was cancelled or ran past its deadline."""
        if self.cancel_event.is_set():
            raise OperationCancelledError("chat stream cancelled")
        if time.monotonic() > self.deadline:
            raise RequestTimeoutError(f"chat response exceeded {self.timeout:.0f}s")

    def emit(self, event: ChatEvent) -> None:
        while not self.cancel_event.is_set():
            try:
                self._queue.put(event, timeout=0.1)
                return
            except queue.Full:
                continue

    def cancel(self) -> None:
        self.cancel_event.set()

    def __iter__(self) -> Iterator[ChatEvent]:
        while True:
            remaining = self.deadline - time.monotonic()
            if remaining <= 0:
                self.cancel()
                yield ChatEvent(type="error", error=f"chat response exceeded {self.timeout:.0f}s")
                return
            try:
                event = self._queue.get(timeout=min(remaining, 0.5))
            except queue.Empty:
                if not self._thread.is_alive() and self._queue.empty():
                    return
                continue
            yield event
            if event.type in ("done", "error"):
                return


class ChatOrchestrator:
    def __init__(
        self,
        session_store,
        search_engine,
        chat_client,
        context_chunks: int = 8,
        vector_weight: float = 0.7,
        max_prompt_length: int = 12000,
        stream_timeout: float = 300,
        history_messages: int = 6,
        request_timeout: float = 120,
    ):
        self.session_store = session_store
        self.search_engine = search_engine
        self.chat_client = chat_client
        self.context_chunks = context_chunks
        self.vector_weight = vector_weight
        self.max_prompt_length = max_prompt_length
        self.stream_timeout = stream_timeout
        self.history_messages = history_messages
        self.request_timeout = request_timeout

    def retrieve_context(self, repository_id: str, query: str) -> List[RetrievedChunk]:
        """Hybrid search for grounding chunks. A failure yields no context."""
        started = time.perf_counter()
        try:
            results = self.search_engine.hybrid_search(
                repository_id, query, self.context_chunks, self.vector_weight
            )
        except Exception as e:
            logger.warning(f"Context retrieval failed for repository {repository_id}: {e}")
            return []
        chunks = [RetrievedChunk.from_result(r) for r in results]
        logger.info(
            f"Retrieved {len(chunks)} context chunks from {repository_id} "
            f"in {(time.perf_counter() - started) * 1000:.1f}ms"
        )
        return chunks

    def _history(self, previous: List[ChatMessage]) -> List[Dict[str, str]]:
        if self.history_messages <= 0:
            return []
        turns = [m for m in previous if m.role in (Role.USER, Role.ASSISTANT)]
        return [{"role": m.role, "content": m.content} for m in turns[-self.history_messages:]]

    def _prepare(self, conversation: Conversation, message: str):
        history = self._history(conversation.messages)
        conversation.append_message(Role.USER, message)

        context: List[RetrievedChunk] = []
        if conversation.has_repository:
            context = self.retrieve_context(conversation.repository_id, message)

        snippets = [
            format_code_snippet(c.file_path, c.content, c.start_line, c.end_line, c.language)
            for c in context
        ]
        prompt = build_prompt(snippets, message, self.max_prompt_length)
        return context, prompt, build_messages(SYSTEM_PROMPT, prompt, history)

    def _finish(
        self,
        conversation: Conversation,
        answer: str,
        context: List[RetrievedChunk],
        tokens_used: int,
    ) -> None:
        conversation.append_message(Role.ASSISTANT, answer, retrieved_chunks=context, tokens_used=tokens_used)
        if conversation.message_count == 2 and conversation.title == DEFAULT_TITLE:
            conversation.title = conversation.generate_title()
        self.session_store.save(conversation)

    def _remaining(self, deadline: float) -> float:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise RequestTimeoutError(f"chat response exceeded {self.request_timeout:.0f}s")
        return remaining

    @staticmethod
    def _tokens(usage: Optional[Dict[str, int]], prompt: str, answer: str) -> int:
        if usage and usage.get("total_tokens"):
            return int(usage["total_tokens"])
        return estimate_tokens(SYSTEM_PROMPT) + estimate_tokens(prompt) + estimate_tokens(answer)

    def respond(self, session_id: str, user_id: str, message: str) -> ChatResult:
        """Answer a message and persist both sides of the exchange.

        Retrieval and generation share one request_timeout deadline; the
        model call gets only the time left.

        Raises:
            SessionNotFoundError: If the conversation does not exist for the user
            LLMError: If the model call fails; nothing is persisted
            RequestTimeoutError: If the deadline passes; nothing is persisted
        """
        started = time.perf_counter()
        deadline = time.monotonic() + self.request_timeout
        conversation = self.session_store.get(session_id, user_id)
        context, prompt, messages = self._prepare(conversation, message)

        llm_started = time.perf_counter()
        try:
            response = self.chat_client.chat(messages, timeout=self._remaining(deadline))
        except LLMError as e:
            if time.monotonic() >= deadline:
                raise RequestTimeoutError(f"chat response exceeded {self.request_timeout:.0f}s") from e
            raise
        self._remaining(deadline)
        tokens_used = self._tokens(response.usage, prompt, response.content)
        logger.info(
            f"LLM answered session {session_id} in {time.perf_counter() - llm_started:.2f}s "
            f"({tokens_used} tokens, {len(response.content)} chars)"
        )

        self._finish(conversation, response.content, context, tokens_used)
        logger.info(f"Chat message for session {session_id} processed in {time.perf_counter() - started:.2f}s")
        return ChatResult(conversation=conversation, answer=response.content, context=context, tokens_used=tokens_used)

    def respond_stream(self, session_id: str, user_id: str, message: str) -> ChatStream:
        """Stream an answer as ChatEvents.

        The conversation is loaded before the stream starts, so an unknown
        session raises SessionNotFoundError here rather than as an event.
        """
        conversation = self.session_store.get(session_id, user_id)

        def produce(stream: ChatStream) -> None:
            started = time.perf_counter()
            context, prompt, messages = self._prepare(conversation, message)
            stream.check()

            parts: List[str] = []
            usage = None
            try:
                for delta in self.chat_client.chat_stream(messages, stream.cancel_event):
                    stream.check()
                    if delta.usage:
                        usage = delta.usage
                    if delta.content:
                        parts.append(delta.content)
                        stream.emit(ChatEvent(type="content", delta=delta.content, content="".join(parts)))
            except OperationCancelledError:
                raise
            except Exception as e:
                logger.error(f"Streaming answer for session {session_id} failed: {e}")
                stream.emit(ChatEvent(type="error", error=f"failed to generate response: {e}"))
                return

            answer = "".join(parts)
            tokens_used = 0
            if answer:
                tokens_used = self._tokens(usage, prompt, answer)
                self._finish(conversation, answer, context, tokens_used)
            logger.info(
                f"Streamed answer for session {session_id} in {time.perf_counter() - started:.2f}s "
                f"({tokens_used} tokens, {len(answer)} chars)"
            )
            stream.emit(ChatEvent(type="done", content=answer, conversation=conversation))

        return ChatStream(produce, self.stream_timeout)


def make_orchestrator(cfg: Dict, session_store, search_engine, chat_client) -> ChatOrchestrator:
    chat = cfg["chat"]
    return ChatOrchestrator(
        session_store,
        search_engine,
        chat_client,
        context_chunks=int(chat["context_chunks"]),
        vector_weight=float(chat["vector_weight"]),
        max_prompt_length=int(chat["max_prompt_length"]),
        stream_timeout=float(chat["stream_timeout"]),
        request_timeout=float(chat.get("request_timeout", 120)),
        history_messages=int(chat.get("history_messages", 6)),
    )
