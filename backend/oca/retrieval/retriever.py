"""Query-time retrieval: embed the query, then run a similarity search."""

from __future__ import annotations

import time
from enum import Enum

from oca.core.errors import DependencyUnavailable, DimensionMismatch, StoreUnavailable
from oca.core.logging import get_logger
from oca.core.metrics import RETRIEVAL_DEGRADED, RETRIEVAL_LATENCY
from oca.db.store import Datastore
from oca.ingest.embeddings import Embedder
from oca.models.entities import ScoredChunk

logger = get_logger(__name__)


class RetrievalPolicy(str, Enum):
    """What to do when the embedder or the store fails.

    Failures are an unreachable dependency or a vector whose dimension does
    not match the store.

    ``SOFT_DEGRADE`` returns no context and lets the caller answer from
    general knowledge. ``HARD_FAIL`` propagates the error.
    """

    SOFT_DEGRADE = "soft_degrade"
    HARD_FAIL = "hard_fail"


class Retriever:
    """Turns a user query into ranked context chunks."""

    def __init__(
        self,
        embedder: Embedder,
        store: Datastore | None,
        policy: RetrievalPolicy = RetrievalPolicy.SOFT_DEGRADE,
        top_k: int = 5,
        threshold: float = 0.7,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.policy = policy
        self.top_k = top_k
        self.threshold = threshold

    async def retrieve(
        self,
        query: str,
        top_k: int | None = None,
        threshold: float | None = None,
        policy: RetrievalPolicy | None = None,
    ) -> list[ScoredChunk]:
        policy = policy or self.policy
        top_k = top_k if top_k is not None else self.top_k
        threshold = threshold if threshold is not None else self.threshold
        start = time.perf_counter()
        try:
            if self.store is None:
                raise StoreUnavailable("Vector store is not configured")
            vector = await self.embedder.embed(query)
            results = await self.store.similarity_search(vector, threshold=threshold, top_k=top_k)
        except (DependencyUnavailable, DimensionMismatch) as exc:
            if policy is RetrievalPolicy.HARD_FAIL:
                raise
            RETRIEVAL_DEGRADED.labels(mode=policy.value).inc()
            logger.warning("Retrieval unavailable, continuing without context: %s", exc)
            return []
        finally:
            RETRIEVAL_LATENCY.labels(mode=policy.value).observe(time.perf_counter() - start)
        logger.debug("Retrieved %s chunks above %.2f", len(results), threshold)
        return results


__all__ = ["RetrievalPolicy", "Retriever"]
