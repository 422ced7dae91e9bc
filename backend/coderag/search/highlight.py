"""Excerpt generation for search results."""

from __future__ import annotations

HIGHLIGHT_WINDOW = 200
HIGHLIGHT_STEP = 50


def truncate_content(content: str, max_len: int = HIGHLIGHT_WINDOW) -> str:
    if len(content) <= max_len:
        return content
    return content[:max_len] + "..."


def generate_highlight(content: str, query: str) -> str:
    """Return the 200-char window containing the most distinct query words.

    Windows start every 50 chars. Falls back to the first 200 chars when
    no window contains any query word.
    """
    words = query.lower().split()
    if not words:
        return truncate_content(content)

    lower_content = content.lower()
    best_pos = -1
    max_matches = 0
    for i in range(0, len(content) - 100, HIGHLIGHT_STEP):
        section = lower_content[i:i + HIGHLIGHT_WINDOW]
        matches = sum(1 for word in set(words) if word in section)
        if matches > max_matches:
            max_matches = matches
            best_pos = i

    if best_pos == -1:
        return truncate_content(content)

    end = min(len(content), best_pos + HIGHLIGHT_WINDOW)
    result = content[best_pos:end]
    if end < len(content):
        result += "..."
    if best_pos > 0:
        result = "..." + result
    return result
