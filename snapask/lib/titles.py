"""Display titles and previews derived from message text."""

from __future__ import annotations

UNTITLED = "Untitled Conversation"
TITLE_LENGTH = 50
PREVIEW_LENGTH = 100
ELLIPSIS = "..."


def generate_title(first_prompt: str | None) -> str:
    """Title from the first user prompt.

    Whitespace is stripped, then the first 50 characters are kept; the
    ellipsis marker is appended only when something was cut off.
    """
    text = (first_prompt or "").strip()
    if not text:
        return UNTITLED
    title = text[:TITLE_LENGTH]
    if len(title) < len(text):
        return f"{title}{ELLIPSIS}"
    return title


def make_preview(first_answer: str | None) -> str:
    if not first_answer:
        return ""
    return first_answer[:PREVIEW_LENGTH]


__all__ = ["UNTITLED", "TITLE_LENGTH", "PREVIEW_LENGTH", "ELLIPSIS", "generate_title", "make_preview"]
