"""HTTP client for the Ollama runtime (local daemon or ollama.com)."""

from __future__ import annotations

from typing import Any, AsyncIterator, Sequence

import httpx
import orjson

from oca.core.config import Settings
from oca.core.errors import EmbeddingUnavailable, UpstreamError
from oca.core.logging import get_logger
from oca.models.entities import ChatMessage

logger = get_logger(__name__)


class OllamaClient:
    """Stateless request/response wrapper; safe to share between requests."""

    def __init__(
        self,
        host: str = "http://localhost:11434",
        api_key: str | None = None,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.host = host.rstrip("/")
        self.is_cloud = "ollama.com" in self.host or self.host.startswith("https://")
        headers: dict[str, str] = {}
        if self.is_cloud and api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=self.host,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )
        logger.info("Using %s Ollama at %s", "cloud" if self.is_cloud else "local", self.host)

    @classmethod
    def from_settings(cls, settings: Settings) -> "OllamaClient":
        return cls(host=settings.llm_host, api_key=settings.llm_api_key, timeout=settings.llm_timeout)

    async def chat_stream(self, messages: Sequence[ChatMessage], model: str) -> AsyncIterator[str]:
        """Yield content fragments as the model produces them."""
        payload = {"model": model, "messages": [m.to_dict() for m in messages], "stream": True}
        try:
            async with self._client.stream("POST", "/api/chat", json=payload) as response:
                if response.is_error:
                    body = await response.aread()
                    raise UpstreamError(f"LLM service error: HTTP {response.status_code} {_error_detail(body)}")
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    part = _parse_line(line)
                    fragment = (part.get("message") or {}).get("content") or ""
                    if fragment:
                        yield fragment
                    if part.get("done"):
                        return
        except httpx.HTTPError as exc:
            raise UpstreamError(f"LLM service error: {exc}") from exc

    async def chat(self, messages: Sequence[ChatMessage], model: str) -> str:
        payload = {"model": model, "messages": [m.to_dict() for m in messages], "stream": False}
        try:
            response = await self._client.post("/api/chat", json=payload)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"LLM service error: {exc}") from exc
        if response.is_error:
            raise UpstreamError(f"LLM service error: HTTP {response.status_code} {_error_detail(response.content)}")
        part = _parse_line(response.text)
        return (part.get("message") or {}).get("content") or ""

    async def embed(self, text: str, model: str) -> list[float]:
        try:
            response = await self._client.post("/api/embeddings", json={"model": model, "prompt": text})
        except httpx.HTTPError as exc:
            raise EmbeddingUnavailable(f"Embedding generation error: {exc}") from exc
        if response.is_error:
            raise EmbeddingUnavailable(
                f"Embedding generation error: HTTP {response.status_code} {_error_detail(response.content)}"
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise EmbeddingUnavailable("Embedding generation error: malformed response") from exc
        embedding = data.get("embedding") if isinstance(data, dict) else None
        if not isinstance(embedding, list):
            raise EmbeddingUnavailable("Embedding generation error: response has no embedding")
        return embedding

    async def aclose(self) -> None:
        await self._client.aclose()


def _parse_line(line: str) -> dict[str, Any]:
    try:
        part = orjson.loads(line)
    except orjson.JSONDecodeError as exc:
        raise UpstreamError(f"LLM service error: malformed response line {line[:80]!r}") from exc
    if not isinstance(part, dict):
        raise UpstreamError("LLM service error: unexpected response shape")
    if part.get("error"):
        raise UpstreamError(f"LLM service error: {part['error']}")
    return part


def _error_detail(body: bytes) -> str:
    try:
        data = orjson.loads(body)
    except orjson.JSONDecodeError:
        return body.decode("utf-8", errors="ignore")[:200]
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return ""


__all__ = ["OllamaClient"]
