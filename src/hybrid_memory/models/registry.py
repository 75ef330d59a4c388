"""Embedding model registry for the hybrid memory engine.

The vector collection is created with a fixed dimensionality, so the
embedding model must be known up front.  Every supported model is listed
here together with its output size; anything else is rejected at startup.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ModelProvider(Enum):
    """Where the embedding model runs."""

    REMOTE = "remote"
    """OpenAI-compatible ``/embeddings`` HTTP API."""

    LOCAL = "local"
    """In-process sentence-transformers model loaded from disk or the hub."""


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class EmbeddingSpec:
    """Metadata for an embedding model.

    Attributes:
        id: Model identifier as passed to the backend.
        name: Human-friendly display name.
        provider: Where the model runs.
        dimensions: Output vector dimensionality.
    """

    id: str
    name: str
    provider: ModelProvider
    dimensions: int


class UnsupportedModelError(ValueError):
    """Raised when an embedding model's dimensionality cannot be determined."""


# ---------------------------------------------------------------------------
# Embedding Models
# ---------------------------------------------------------------------------

EMBEDDING_MODELS: dict[str, EmbeddingSpec] = {
    "text-embedding-3-small": EmbeddingSpec(
        id="text-embedding-3-small",
        name="OpenAI Embedding 3 Small",
        provider=ModelProvider.REMOTE,
        dimensions=1536,
    ),
    "text-embedding-3-large": EmbeddingSpec(
        id="text-embedding-3-large",
        name="OpenAI Embedding 3 Large",
        provider=ModelProvider.REMOTE,
        dimensions=3072,
    ),
    "text-embedding-ada-002": EmbeddingSpec(
        id="text-embedding-ada-002",
        name="OpenAI Ada 002",
        provider=ModelProvider.REMOTE,
        dimensions=1536,
    ),
    "sentence-transformers/all-MiniLM-L6-v2": EmbeddingSpec(
        id="sentence-transformers/all-MiniLM-L6-v2",
        name="MiniLM L6 v2",
        provider=ModelProvider.LOCAL,
        dimensions=384,
    ),
    "sentence-transformers/all-mpnet-base-v2": EmbeddingSpec(
        id="sentence-transformers/all-mpnet-base-v2",
        name="MPNet Base v2",
        provider=ModelProvider.LOCAL,
        dimensions=768,
    ),
    "BAAI/bge-small-en-v1.5": EmbeddingSpec(
        id="BAAI/bge-small-en-v1.5",
        name="BGE Small EN v1.5",
        provider=ModelProvider.LOCAL,
        dimensions=384,
    ),
    "google/embeddinggemma-300m": EmbeddingSpec(
        id="google/embeddinggemma-300m",
        name="EmbeddingGemma 300M",
        provider=ModelProvider.LOCAL,
        dimensions=768,
    ),
}

DEFAULT_REMOTE_MODEL = "text-embedding-3-small"
DEFAULT_LOCAL_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

_BY_BASENAME: dict[str, EmbeddingSpec] = {
    PurePath(spec.id).name: spec for spec in EMBEDDING_MODELS.values()
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def get_embedding(model: str) -> EmbeddingSpec | None:
    """Look up a model by id, or by the last path component of a local path.

    ``/models/all-MiniLM-L6-v2`` resolves to the MiniLM spec so a model
    downloaded to disk is recognised the same as its hub id.
    """
    spec = EMBEDDING_MODELS.get(model)
    if spec is not None:
        return spec
    return _BY_BASENAME.get(PurePath(model.rstrip("/")).name)


def vector_dims_for_model(model: str) -> int:
    """Return the output dimensionality for *model*.

    Raises:
        UnsupportedModelError: If the model is unknown.
    """
    spec = get_embedding(model)
    if spec is not None:
        return spec.dimensions
    lowered = model.lower()
    if "embeddinggemma" in lowered or "300m" in lowered:
        return 768
    raise UnsupportedModelError(f"Unsupported embedding model: {model}")
