"""Embedding model registry and clients for the hybrid memory engine."""

from hybrid_memory.models.embeddings import (
    EmbeddingError,
    EmbeddingProvider,
    build_embedding_provider,
)
from hybrid_memory.models.local import LocalEmbeddingClient
from hybrid_memory.models.registry import (
    DEFAULT_LOCAL_MODEL,
    DEFAULT_REMOTE_MODEL,
    EMBEDDING_MODELS,
    EmbeddingSpec,
    ModelProvider,
    UnsupportedModelError,
    get_embedding,
    vector_dims_for_model,
)
from hybrid_memory.models.remote import RemoteEmbeddingClient, RemoteEmbeddingError

__all__ = [
    "DEFAULT_LOCAL_MODEL",
    "DEFAULT_REMOTE_MODEL",
    "EMBEDDING_MODELS",
    "EmbeddingError",
    "EmbeddingProvider",
    "EmbeddingSpec",
    "LocalEmbeddingClient",
    "ModelProvider",
    "RemoteEmbeddingClient",
    "RemoteEmbeddingError",
    "UnsupportedModelError",
    "build_embedding_provider",
    "get_embedding",
    "vector_dims_for_model",
]
