"""In-process embeddings via sentence-transformers.

The model is loaded on the first :meth:`LocalEmbeddingClient.embed` call, in
the default executor, because loading weights from disk (or the hub) takes
seconds.  Encoding also runs in the executor so the event loop stays free.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class LocalEmbeddingClient:
    """Lazy wrapper around a ``SentenceTransformer`` model.

    Args:
        model_path: Hub id or local directory of the model.
        cache_folder: Where downloaded weights are cached.
        device: Torch device string.
    """

    def __init__(
        self,
        model_path: str,
        cache_folder: str | None = None,
        device: str = "cpu",
    ) -> None:
        self.model_path = model_path
        self.cache_folder = cache_folder
        self.device = device
        self._model: Any = None
        self._load_lock = asyncio.Lock()

    def _load(self) -> Any:
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as exc:
            raise ImportError(
                "sentence-transformers is required for local embeddings; "
                "install hybrid-memory[local]"
            ) from exc
        path = self.model_path
        if path.startswith("~"):
            path = str(Path(path).expanduser())
        cache = str(Path(self.cache_folder).expanduser()) if self.cache_folder else None
        logger.info("Loading local embedding model %s (device=%s)", path, self.device)
        return SentenceTransformer(path, device=self.device, cache_folder=cache)

    async def _ensure_model(self) -> Any:
        if self._model is not None:
            return self._model
        async with self._load_lock:
            if self._model is None:
                loop = asyncio.get_running_loop()
                self._model = await loop.run_in_executor(None, self._load)
        return self._model

    async def embed(self, model: str, texts: list[str]) -> list[list[float]]:
        """Encode *texts* into normalised vectors.

        *model* is accepted for interface parity with the remote client; the
        weights in use are always those named by ``model_path``.
        """
        if not texts:
            return []
        encoder = await self._ensure_model()
        loop = asyncio.get_running_loop()
        matrix = await loop.run_in_executor(
            None,
            lambda: encoder.encode(list(texts), normalize_embeddings=True),
        )
        logger.debug("Local embedding: model=%s, texts=%d", model, len(texts))
        return [row.tolist() for row in matrix]

    async def close(self) -> None:
        self._model = None

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def __repr__(self) -> str:
        return f"LocalEmbeddingClient(model_path={self.model_path!r}, device={self.device!r})"
