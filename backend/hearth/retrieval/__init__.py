"""Retrieval orchestration components."""

from .vector_index import VectorStore, cosine_similarity, euclidean_distance
from .search import RAGPipeline, RagResponse

__all__ = [
    "VectorStore",
    "RAGPipeline",
    "RagResponse",
    "cosine_similarity",
    "euclidean_distance",
]
