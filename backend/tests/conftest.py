"""Test fixtures for OCA."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import AsyncIterator, Sequence

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from oca.core.config import Settings, get_settings  # noqa: E402
from oca.core.errors import UpstreamError  # noqa: E402
from oca.db.sqlite import SQLiteDatabase, SQLiteDatastore  # noqa: E402
from oca.ingest.embeddings import HashedEmbedder  # noqa: E402
from oca.models.entities import ChatMessage  # noqa: E402

TEST_DIM = 64

_ENV_NAMES = (
    "OLLAMA_HOST",
    "OLLAMA_MODEL",
    "OLLAMA_API_KEY",
    "OLLAMA_EMBED_MODEL",
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "PORT",
)


class FakeLLM:
    """Scripted stand-in for the Ollama client.

    ``fail_at`` raises ``UpstreamError`` instead of yielding that fragment
    index; ``fail_at=0`` fails before any output.
    """

    def __init__(self, fragments: Sequence[str] = ("Hello", ", ", "student", "!"), fail_at: int | None = None) -> None:
        self.fragments = list(fragments)
        self.fail_at = fail_at
        self.calls: list[list[ChatMessage]] = []
        self.closed = False

    async def chat_stream(self, messages: Sequence[ChatMessage], model: str) -> AsyncIterator[str]:
        self.calls.append(list(messages))
        for index, fragment in enumerate(self.fragments):
            if self.fail_at is not None and index == self.fail_at:
                raise UpstreamError("LLM service error: model crashed")
            yield fragment

    async def chat(self, messages: Sequence[ChatMessage], model: str) -> str:
        self.calls.append(list(messages))
        if self.fail_at is not None:
            raise UpstreamError("LLM service error: model crashed")
        return "".join(self.fragments)

    async def embed(self, text: str, model: str) -> list[float]:
        raise AssertionError("tests embed through HashedEmbedder")

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate tests from real configuration and environment."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("OCA_CONFIG", str(tmp_path / "missing-config.yaml"))
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("OCA_") and name != "OCA_CONFIG":
            monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "oca.db",
        embedding_backend="hashed",
        embedding_dim=TEST_DIM,
        retrieval_threshold=0.1,
        log_json=False,
    )


@pytest.fixture
def datastore(settings: Settings) -> SQLiteDatastore:
    database = SQLiteDatabase(settings.db_path)
    database.ensure_schema()
    store = SQLiteDatastore(database, embedding_dim=TEST_DIM)
    yield store
    database.close()


@pytest.fixture
def embedder() -> HashedEmbedder:
    return HashedEmbedder(dim=TEST_DIM)


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture(scope="session")
def course_text() -> str:
    return (
        "Requirements elicitation gathers stakeholder needs through interviews and workshops. "
        "Use case diagrams model actors and their goals in the system. "
        "Functional requirements describe behaviour while non-functional requirements describe qualities."
    )
