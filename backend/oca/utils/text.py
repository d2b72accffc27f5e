"""Text processing helpers."""

from __future__ import annotations

import re

INLINE_SPACE_RE = re.compile(r"[ \t\f\v]+")
BLANK_LINES_RE = re.compile(r"\n{3,}")

EXCERPT_CHARS = 200


def normalize_lines(text: str) -> str:
    """Collapse runs of spaces and blank lines but keep paragraph breaks."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [INLINE_SPACE_RE.sub(" ", line).strip() for line in text.split("\n")]
    return BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()


def excerpt(text: str, limit: int = EXCERPT_CHARS) -> str:
    """First ``limit`` characters followed by an ellipsis, even when shorter."""
    return text[:limit] + "..."
