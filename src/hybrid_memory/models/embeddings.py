"""Unified embedding interface for the hybrid memory engine.

This module provides a single :class:`EmbeddingProvider` that wraps either an
OpenAI-compatible HTTP API (remote) or a sentence-transformers model (local),
selected transparently based on the configured provider.

**CRITICAL**: The embedding model fixes the dimensionality of the vector
collection.  It cannot be changed after the first run without discarding all
stored vectors.

Usage::

    from hybrid_memory.models.embeddings import EmbeddingProvider

    provider = EmbeddingProvider(
        model_id="text-embedding-3-small",
        remote_client=remote,
    )
    vectors = await provider.embed(["hello world", "dark mode"])
    single  = await provider.embed_one("hello world")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from hybrid_memory.models.local import LocalEmbeddingClient
from hybrid_memory.models.registry import (
    ModelProvider,
    UnsupportedModelError,
    get_embedding,
    vector_dims_for_model,
)
from hybrid_memory.models.remote import DEFAULT_BASE_URL, RemoteEmbeddingClient

if TYPE_CHECKING:
    from hybrid_memory.config import HybridMemorySettings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocols -- structural typing for embedding clients
# ---------------------------------------------------------------------------

@runtime_checkable
class SupportsEmbed(Protocol):
    """Structural type for any client that can produce embeddings.

    Both :class:`RemoteEmbeddingClient` and :class:`LocalEmbeddingClient`
    satisfy this protocol.
    """

    async def embed(self, model: str, texts: list[str]) -> list[list[float]]:
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class EmbeddingError(Exception):
    """Raised when an embedding operation fails.

    Common causes include:

    * The required client (remote or local) was not provided.
    * The upstream API returned an error or unexpected payload.
    * The local model could not be loaded.
    * The backend returned the wrong number of vectors.
    """


# ---------------------------------------------------------------------------
# Embedding provider
# ---------------------------------------------------------------------------

class EmbeddingProvider:
    """Unified embedding interface.

    The backend is resolved once at construction time: registered models use
    their registry provider; unregistered models accepted by the dimension
    heuristic run locally unless *provider* says otherwise.

    Args:
        model_id: Model id or local model path.
        remote_client: Client used for remote models.
        local_client: Client used for local models.
        provider: Explicit backend choice, overriding the registry.

    Raises:
        EmbeddingError: If the dimensionality of *model_id* is unknown.
    """

    __slots__ = (
        "model_id",
        "dimensions",
        "provider",
        "_remote",
        "_local",
    )

    def __init__(
        self,
        model_id: str,
        remote_client: Any = None,
        local_client: Any = None,
        provider: ModelProvider | None = None,
    ) -> None:
        self.model_id: str = model_id
        try:
            self.dimensions: int = vector_dims_for_model(model_id)
        except UnsupportedModelError as exc:
            raise EmbeddingError(str(exc)) from exc

        if provider is None:
            spec = get_embedding(model_id)
            provider = spec.provider if spec is not None else ModelProvider.LOCAL
        self.provider: ModelProvider = provider
        self._remote: Any = remote_client
        self._local: Any = local_client

        if self.provider is ModelProvider.LOCAL and self._local is None:
            logger.warning(
                "EmbeddingProvider created for local model '%s' without a "
                "local client -- embed() will raise.",
                model_id,
            )
        if self.provider is ModelProvider.REMOTE and self._remote is None:
            logger.warning(
                "EmbeddingProvider created for remote model '%s' without a "
                "remote client -- embed() will raise.",
                model_id,
            )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts into vectors.

        Raises:
            EmbeddingError: If the required backend client is unavailable,
                the input is empty, or the backend returns an unexpected
                number of vectors.
        """
        if not texts:
            raise EmbeddingError("Cannot embed an empty list of texts.")

        vectors = await self._dispatch(texts)

        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Sent {len(texts)} texts but received {len(vectors)} "
                f"vectors from model '{self.model_id}'."
            )
        return vectors

    async def embed_one(self, text: str) -> list[float]:
        """Embed a single text string."""
        results = await self.embed([text])
        return results[0]

    async def close(self) -> None:
        """Release backend resources (HTTP sessions, loaded weights)."""
        for client in (self._remote, self._local):
            if client is not None:
                await client.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _dispatch(self, texts: list[str]) -> list[list[float]]:
        is_local = self.provider is ModelProvider.LOCAL
        client = self._local if is_local else self._remote
        label = "local" if is_local else "remote"
        if client is None:
            raise EmbeddingError(
                f"No {label} embedding client is available for model "
                f"'{self.model_id}'."
            )
        try:
            return await client.embed(self.model_id, texts)
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError(
                f"The {label} embedding call failed for model '{self.model_id}': {exc}"
            ) from exc

    def __repr__(self) -> str:
        return (
            f"EmbeddingProvider(model_id={self.model_id!r}, "
            f"dimensions={self.dimensions}, backend={self.provider.value!r})"
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def build_embedding_provider(settings: HybridMemorySettings) -> EmbeddingProvider:
    """Construct the provider and its client described by *settings*."""
    if settings.EMBEDDING_PROVIDER == "remote":
        remote = RemoteEmbeddingClient(
            api_key=settings.EMBEDDING_API_KEY or "",
            base_url=settings.EMBEDDING_BASE_URL or DEFAULT_BASE_URL,
        )
        return EmbeddingProvider(
            model_id=settings.effective_model,
            remote_client=remote,
            provider=ModelProvider.REMOTE,
        )

    local = LocalEmbeddingClient(
        model_path=settings.effective_model,
        cache_folder=settings.EMBEDDING_CACHE_DIR,
    )
    return EmbeddingProvider(
        model_id=settings.effective_model,
        local_client=local,
        provider=ModelProvider.LOCAL,
    )
