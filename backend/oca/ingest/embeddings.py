"""Embedding utilities."""

from __future__ import annotations

import hashlib
import math
import re
from array import array
from typing import Protocol, Sequence

from oca.core.config import Settings
from oca.core.errors import EmbeddingUnavailable
from oca.core.logging import get_logger

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+")


class EmbeddingClient(Protocol):
    async def embed(self, text: str, model: str) -> list[float]: ...


class Embedder:
    """Converts text into fixed-length vectors of ``dim`` floats."""

    model_name: str = ""

    def __init__(self, dim: int) -> None:
        self._dim = dim

    @property
    def dim(self) -> int:
        return self._dim

    async def embed(self, text: str) -> list[float]:  # pragma: no cover - interface
        raise NotImplementedError

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed in input order; any single failure fails the whole batch."""
        vectors: list[list[float]] = []
        for text in texts:
            vectors.append(await self.embed(text))
        return vectors

    def _validate(self, vector: Sequence[float]) -> list[float]:
        if len(vector) != self._dim:
            raise EmbeddingUnavailable(
                f"Embedding model {self.model_name!r} returned {len(vector)} dimensions, expected {self._dim}"
            )
        values: list[float] = []
        for value in vector:
            if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
                raise EmbeddingUnavailable(f"Embedding model {self.model_name!r} returned a non-finite value")
            values.append(float(value))
        return values


class OllamaEmbedder(Embedder):
    """Embeddings from the LLM runtime (``nomic-embed-text`` by default)."""

    def __init__(self, client: EmbeddingClient, model_name: str = "nomic-embed-text", dim: int = 768) -> None:
        super().__init__(dim)
        self.client = client
        self.model_name = model_name

    async def embed(self, text: str) -> list[float]:
        vector = await self.client.embed(text, self.model_name)
        return self._validate(vector)


class HashedEmbedder(Embedder):
    """Deterministic hashed bag-of-words embedder for offline use."""

    model_name = "hashed"

    async def embed(self, text: str) -> list[float]:
        vector = [0.0] * self._dim
        for token in _tokenize(text):
            vector[_hash_token(token, self._dim)] += 1.0
        _normalize(vector)
        return self._validate(vector)


def build_embedder(settings: Settings, client: EmbeddingClient) -> Embedder:
    if settings.embedding_backend == "hashed":
        logger.warning("Using hashed embeddings; retrieval quality is lexical only")
        return HashedEmbedder(dim=settings.embedding_dim)
    return OllamaEmbedder(client, model_name=settings.embedding_model, dim=settings.embedding_dim)


def vector_to_bytes(vector: Sequence[float]) -> bytes:
    return array("f", vector).tobytes()


def vector_from_bytes(blob: bytes) -> list[float]:
    floats = array("f")
    floats.frombytes(blob)
    return list(floats)


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "Embedder",
    "OllamaEmbedder",
    "HashedEmbedder",
    "build_embedder",
    "vector_to_bytes",
    "vector_from_bytes",
]
