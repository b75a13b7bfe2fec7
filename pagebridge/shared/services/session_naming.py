"""Derive conversation titles from the first user message.

Deterministic, no model call: the title is the message itself,
shortened at a word boundary when it is too long.
"""
from __future__ import annotations

import re

MAX_TITLE_LENGTH = 30
ELLIPSIS = "..."

_WHITESPACE_RE = re.compile(r"\s+")


def generate_title(message: str, max_length: int = MAX_TITLE_LENGTH) -> str:
    """Return a title of at most ``max_length`` chars (plus an ellipsis).

    Whitespace runs collapse to single spaces. When truncation is needed
    the cut happens at the last space past the midpoint of the limit;
    if there is none the text is hard-truncated.
    """
    normalized = _WHITESPACE_RE.sub(" ", message.strip())
    if len(normalized) <= max_length:
        return normalized

    truncated = normalized[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > max_length * 0.5:
        return truncated[:last_space] + ELLIPSIS
    return truncated + ELLIPSIS
