"""Retrieval-augmented chat."""

from .llm_client import ChatClient, LLMConfig, LLMResponse, StreamDelta, build_messages, make_chat_client
from .orchestrator import ChatEvent, ChatOrchestrator, ChatResult, ChatStream, make_orchestrator
from .prompts import SYSTEM_PROMPT, build_prompt, estimate_tokens, format_code_snippet, truncate_if_too_long

__all__ = [
    "SYSTEM_PROMPT",
    "ChatClient",
    "ChatEvent",
    "ChatOrchestrator",
    "ChatResult",
    "ChatStream",
    "LLMConfig",
    "LLMResponse",
    "StreamDelta",
    "build_messages",
    "build_prompt",
    "estimate_tokens",
    "format_code_snippet",
    "make_chat_client",
    "make_orchestrator",
    "truncate_if_too_long",
]
