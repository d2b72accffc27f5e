"""Retrieval orchestration components."""

from .retriever import RetrievalPolicy, Retriever

__all__ = [
    "RetrievalPolicy",
    "Retriever",
]
