"""Document loaders for course material."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from markdown_it import MarkdownIt

from oca.ingest.types import LoadedDocument
from oca.utils.text import normalize_lines

_MD = MarkdownIt()

# Block tokens whose inline content becomes one paragraph of plain text.
_TEXT_BLOCKS = frozenset({"inline", "fence", "code_block", "html_block"})


class BaseLoader:
    """Common loader interface."""

    suffixes: tuple[str, ...] = ()
    mime_type: str = "application/octet-stream"

    def can_load(self, path: Path) -> bool:
        return path.suffix.lower() in self.suffixes

    def load(self, path: Path) -> LoadedDocument:  # pragma: no cover - interface
        raise NotImplementedError

    def _read(self, path: Path) -> tuple[str, int]:
        raw = path.read_bytes()
        return raw.decode("utf-8", errors="ignore"), len(raw)


class MarkdownLoader(BaseLoader):
    """Markdown lecture notes, optionally with YAML front matter.

    ``title`` and ``section`` keys in the front matter are picked up; the
    body is flattened to plain text one block per paragraph.
    """

    suffixes = (".md", ".markdown")
    mime_type = "text/markdown"

    def load(self, path: Path) -> LoadedDocument:
        text, size = self._read(path)
        front_matter, body = split_front_matter(text)
        metadata: dict[str, Any] = {"path": str(path)}
        if front_matter:
            metadata["front_matter"] = front_matter
        title = front_matter.get("title")
        section = front_matter.get("section")
        return LoadedDocument(
            path=path,
            text=markdown_to_text(body),
            metadata=metadata,
            mime=self.mime_type,
            title=str(title) if title else path.stem,
            size_bytes=size,
            section=str(section) if section is not None else None,
        )


class TextLoader(BaseLoader):
    suffixes = (".txt", ".text")
    mime_type = "text/plain"

    def load(self, path: Path) -> LoadedDocument:
        text, size = self._read(path)
        return LoadedDocument(
            path=path,
            text=normalize_lines(text),
            metadata={"path": str(path)},
            mime=self.mime_type,
            title=path.stem,
            size_bytes=size,
        )


class LoaderRegistry:
    """Pick a loader by file suffix."""

    def __init__(self, loaders: list[BaseLoader] | None = None) -> None:
        self._loaders = loaders if loaders is not None else [MarkdownLoader(), TextLoader()]

    def for_path(self, path: Path) -> BaseLoader | None:
        return next((loader for loader in self._loaders if loader.can_load(path)), None)

    def supports(self, path: Path) -> bool:
        return self.for_path(path) is not None

    def load(self, path: Path) -> LoadedDocument:
        loader = self.for_path(path)
        if loader is None:
            raise ValueError(f"Unsupported file type: {path.suffix or path.name}")
        return loader.load(path)


def split_front_matter(text: str) -> tuple[dict[str, Any], str]:
    """Separate a leading ``---`` YAML block from the body.

    Malformed or non-mapping front matter is left in the body untouched.
    """
    if not text.startswith("---"):
        return {}, text
    parts = text.split("---", 2)
    if len(parts) < 3:
        return {}, text
    try:
        front_matter = yaml.safe_load(parts[1]) or {}
    except yaml.YAMLError:
        return {}, text
    if not isinstance(front_matter, dict):
        return {}, text
    return front_matter, parts[2]


def markdown_to_text(text: str) -> str:
    blocks = [token.content.strip() for token in _MD.parse(text) if token.type in _TEXT_BLOCKS]
    blocks = [block for block in blocks if block]
    return normalize_lines("\n\n".join(blocks) if blocks else text)


__all__ = [
    "BaseLoader",
    "MarkdownLoader",
    "TextLoader",
    "LoaderRegistry",
    "split_front_matter",
    "markdown_to_text",
]
