"""Error taxonomy shared by services and the HTTP layer."""

from __future__ import annotations


class OCAError(Exception):
    """Base error carrying the HTTP status it maps to."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationFailed(OCAError):
    status_code = 400


class NotFound(OCAError):
    status_code = 404


class DependencyUnavailable(OCAError):
    """Datastore or LLM runtime unconfigured or unreachable."""

    status_code = 503


class StoreUnavailable(DependencyUnavailable):
    pass


class EmbeddingUnavailable(DependencyUnavailable):
    pass


class UpstreamError(OCAError):
    """The LLM runtime failed to produce a response."""

    status_code = 500


class DimensionMismatch(OCAError):
    status_code = 500


class InvalidChunkingConfig(ValueError):
    pass


__all__ = [
    "OCAError",
    "ValidationFailed",
    "NotFound",
    "DependencyUnavailable",
    "StoreUnavailable",
    "EmbeddingUnavailable",
    "UpstreamError",
    "DimensionMismatch",
    "InvalidChunkingConfig",
]
