"""Prompt templates for code-grounded chat."""

from __future__ import annotations

import dataclasses
from typing import List, Optional

import tiktoken

SYSTEM_PROMPT = """You are a helpful AI assistant specialized in code analysis and software development. You help developers understand and improve their codebase by analyzing provided code snippets and answering questions about them.

Key principles:
- Always base your answers on the provided code snippets
- Reference specific files and line numbers when relevant
- Be precise and accurate in your explanations
- If information is not available in the provided snippets, clearly state this
- Format code blocks with proper syntax highlighting when possible"""

CHAT_PROMPT_HEADER = (
    "You are an AI assistant helping developers understand code. "
    "Use ONLY the provided code snippets to answer questions.\n\n"
)

SNIPPET_TEMPLATE = "\n--- File: {file_path} ({start_line}-{end_line})\n{content}\n\n"

CHAT_PROMPT_FOOTER = """
User question: {question}

Guidelines:
- Reference file paths & line numbers when discussing code
- Be concise and focused in your responses
- If you're not certain about something, say "I'm not certain"
- Only use information from the provided code snippets
- Format code references as: filename:line_number"""

TRUNCATION_MARKER = "\n\n[Content truncated due to length...]"
TRUNCATION_BUFFER = 100


@dataclasses.dataclass
class CodeSnippet:
    file_path: str
    content: str
    start_line: int
    end_line: int
    language: str = ""


def format_code_snippet(
    file_path: str, content: str, start_line: int, end_line: int, language: Optional[str] = None
) -> CodeSnippet:
    """Build a snippet with trailing spaces and tabs stripped from every line."""
    clean = "\n".join(line.rstrip(" \t") for line in content.split("\n"))
    return CodeSnippet(file_path, clean, start_line, end_line, language or "")


def render_chat_prompt(snippets: List[CodeSnippet], question: str) -> str:
    parts = [CHAT_PROMPT_HEADER]
    for s in snippets:
        parts.append(
            SNIPPET_TEMPLATE.format(
                file_path=s.file_path, start_line=s.start_line, end_line=s.end_line, content=s.content
            )
        )
    parts.append(CHAT_PROMPT_FOOTER.format(question=question.strip()))
    return "".join(parts)


def truncate_if_too_long(prompt: str, max_length: int) -> str:
    """Cut an oversized prompt, preferring the start of the last complete snippet."""
    if len(prompt) <= max_length:
        return prompt

    truncated = prompt[:max(0, max_length - TRUNCATION_BUFFER)]
    last_block = truncated.rfind("\n---")
    if last_block > 0:
        return truncated[:last_block] + TRUNCATION_MARKER

    last_space = truncated.rfind(" ")
    if last_space > max_length // 2:
        return truncated[:last_space] + "... [truncated]"
    return truncated + "... [truncated]"


def build_prompt(snippets: List[CodeSnippet], question: str, max_length: int) -> str:
    """Render the chat prompt within max_length, dropping snippets rather than the question."""
    prompt = render_chat_prompt(snippets, question)
    if len(prompt) <= max_length:
        return prompt
    footer = CHAT_PROMPT_FOOTER.format(question=question.strip())
    context = prompt[:len(prompt) - len(footer)]
    budget = max_length - len(footer)
    if budget <= TRUNCATION_BUFFER + len(TRUNCATION_MARKER):
        return truncate_if_too_long(prompt, max_length)
    return truncate_if_too_long(context, budget) + footer


_encoding = None


def estimate_tokens(text: str) -> int:
    global _encoding
    if _encoding is None:
        _encoding = tiktoken.get_encoding("cl100k_base")
    return len(_encoding.encode(text))
