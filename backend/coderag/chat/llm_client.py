from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

import requests
from pydantic import BaseModel

from ..core.errors import LLMError, OperationCancelledError

logger = logging.getLogger(__name__)


class LLMResponse(BaseModel):
    content: str = ""
    finish_reason: str
    usage: Optional[Dict[str, int]] = None
    time_taken: float


class StreamDelta(BaseModel):
    content: str = ""
    usage: Optional[Dict[str, int]] = None
    finish_reason: Optional[str] = None


@dataclass
class LLMConfig:
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    api_key: str = ""
    max_tokens: int = 1000
    temperature: float = 0.7
    timeout: float = 30


def build_messages(
    system_prompt: str,
    user_message: str,
    history: Optional[List[Dict[str, str]]] = None,
) -> List[Dict[str, str]]:
    messages = []
    if system_prompt and system_prompt.strip():
        messages.append({"role": "system", "content": system_prompt.strip()})
    if history:
        messages.extend(history)
    messages.append({"role": "user", "content": user_message.strip()})
    return messages


def _usage(data: Optional[Dict]) -> Optional[Dict[str, int]]:
    if not data:
        return None
    return {
        "prompt_tokens": int(data.get("prompt_tokens") or 0),
        "completion_tokens": int(data.get("completion_tokens") or 0),
        "total_tokens": int(data.get("total_tokens") or 0),
    }


class ChatClient:
    """Client for any OpenAI-compatible /chat/completions endpoint."""

    def __init__(self, config: LLMConfig | None = None, session: Optional[requests.Session] = None):
        self.config = config or LLMConfig()
        self.session = session or requests.Session()
        self.headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            self.headers["Authorization"] = f"Bearer {self.config.api_key}"

    @property
    def url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/chat/completions"

    def _payload(self, messages: List[Dict[str, str]], stream: bool) -> Dict:
        payload = {
            "model": self.config.model,
            "messages": messages,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
        return payload

    def chat(self, messages: List[Dict[str, str]], timeout: Optional[float] = None) -> LLMResponse:
        """Blocking completion.

        timeout lowers the configured HTTP timeout for this call.

        Raises:
            LLMError: On transport errors, HTTP errors or a response without choices
        """
        start_time = time.time()
        try:
            response = self.session.post(
                self.url,
                headers=self.headers,
                json=self._payload(messages, stream=False),
                timeout=self.config.timeout if timeout is None else min(timeout, self.config.timeout),
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise LLMError(f"chat completion failed: {e}") from e

        choices = data.get("choices") or []
        if not choices:
            raise LLMError(f"no response generated: {str(data)[:200]}")
        choice = choices[0]
        return LLMResponse(
            content=(choice.get("message") or {}).get("content") or "",
            finish_reason=choice.get("finish_reason") or "stop",
            usage=_usage(data.get("usage")),
            time_taken=time.time() - start_time,
        )

    def chat_stream(
        self,
        messages: List[Dict[str, str]],
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[StreamDelta]:
        """Yield content deltas from a server-sent event stream.

        Raises:
            LLMError: On transport errors or HTTP errors
            OperationCancelledError: If cancel_event is set while reading
        """
        try:
            response = self.session.post(
                self.url,
                headers=self.headers,
                json=self._payload(messages, stream=True),
                timeout=self.config.timeout,
                stream=True,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise LLMError(f"chat stream failed: {e}") from e

        try:
            for raw in response.iter_lines(decode_unicode=True):
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelledError("chat stream cancelled")
                if not raw or not raw.startswith("data:"):
                    continue
                data = raw[len("data:"):].strip()
                if data == "[DONE]":
                    break
                try:
                    event = json.loads(data)
                except ValueError:
                    logger.warning(f"Skipping malformed stream event: {data[:200]}")
                    continue
                choices = event.get("choices") or []
                delta = StreamDelta(usage=_usage(event.get("usage")))
                if choices:
                    delta.content = (choices[0].get("delta") or {}).get("content") or ""
                    delta.finish_reason = choices[0].get("finish_reason")
                if delta.content or delta.usage or delta.finish_reason:
                    yield delta
        except requests.RequestException as e:
            raise LLMError(f"chat stream interrupted: {e}") from e
        finally:
            response.close()


def make_chat_client(cfg: Dict) -> ChatClient:
    llm = cfg["llm"]
    return ChatClient(
        LLMConfig(
            base_url=llm["base_url"],
            model=llm["model"],
            api_key=llm.get("api_key") or "",
            max_tokens=int(llm.get("max_tokens", 1000)),
            temperature=float(llm.get("temperature", 0.7)),
            timeout=float(llm["timeout"]),
        )
    )
