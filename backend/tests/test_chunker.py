"""Tests for chunker."""

from pathlib import Path

import pytest

from oca.core.errors import InvalidChunkingConfig
from oca.ingest.chunker import build_chunk_payloads, chunk_text
from oca.ingest.types import LoadedDocument


def _letters(length: int) -> str:
    return "".join(chr(ord("a") + idx % 26) for idx in range(length))


def test_fixed_windows_for_2500_chars() -> None:
    text = _letters(2500)
    windows = chunk_text(text, chunk_size=800, overlap=150)
    assert [window.start for window in windows] == [0, 650, 1300, 1950]
    assert [len(window.text) for window in windows] == [800, 800, 800, 550]


@pytest.mark.parametrize(
    ("length", "chunk_size", "overlap"),
    [(2500, 800, 150), (1000, 1000, 200), (999, 100, 0), (37, 10, 9), (5, 800, 150), (4096, 512, 64)],
)
def test_windows_cover_text_without_gaps(length: int, chunk_size: int, overlap: int) -> None:
    text = _letters(length)
    windows = chunk_text(text, chunk_size=chunk_size, overlap=overlap)
    assert windows
    covered = 0
    for previous, window in zip([None, *windows], windows):
        assert 0 < len(window.text) <= chunk_size
        assert text[window.start : window.start + len(window.text)] == window.text
        if previous is not None:
            assert window.start - previous.start == chunk_size - overlap
        assert window.start <= covered
        covered = max(covered, window.start + len(window.text))
    assert covered == length


def test_chunking_is_deterministic() -> None:
    text = _letters(3000)
    assert chunk_text(text, 700, 100) == chunk_text(text, 700, 100)


def test_whitespace_only_windows_are_skipped() -> None:
    text = "a" * 10 + " " * 20 + "b" * 10
    windows = chunk_text(text, chunk_size=10, overlap=0)
    assert [window.start for window in windows] == [0, 30]


@pytest.mark.parametrize(
    ("text", "chunk_size", "overlap"),
    [("", 800, 150), ("   \n\t ", 800, 150), ("abc", 100, 100), ("abc", 100, 150), ("abc", 0, 0), ("abc", 10, -1)],
)
def test_degenerate_input_is_rejected(text: str, chunk_size: int, overlap: int) -> None:
    with pytest.raises(InvalidChunkingConfig):
        chunk_text(text, chunk_size=chunk_size, overlap=overlap)


def test_invalid_config_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        chunk_text("abc", chunk_size=10, overlap=10)


def test_build_chunk_payloads_attaches_provenance() -> None:
    text = "  first window  " + "x" * 20
    document = LoadedDocument(
        path=Path("/course/week1.md"),
        text=text,
        metadata={},
        mime="text/markdown",
        title="week1",
        size_bytes=len(text),
    )
    windows = chunk_text(text, chunk_size=16, overlap=4)
    chunks = build_chunk_payloads(document, windows, section="Elicitation", page_number=3)

    assert [chunk.chunk_index for chunk in chunks] == list(range(len(windows)))
    first = chunks[0]
    assert first.text == "first window"
    assert first.document_name == "week1.md"
    assert first.section == "Elicitation"
    assert first.page_number == 3
    assert first.id is None
    assert first.metadata["total_chunks"] == len(windows)
    assert first.metadata["file_type"] == ".md"
    assert first.metadata["chunk_size"] == len("first window")
    assert all(chunk.text == chunk.text.strip() and chunk.text for chunk in chunks)
