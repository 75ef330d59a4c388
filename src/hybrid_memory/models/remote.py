"""Async client for OpenAI-compatible embedding APIs.

Talks to the ``/embeddings`` endpoint of OpenAI or any service exposing the
same wire format (Azure proxies, vLLM, LiteLLM, ...).  Handles bearer
authentication, rate-limit retries and response ordering.

Usage::

    from hybrid_memory.models.remote import RemoteEmbeddingClient

    async with RemoteEmbeddingClient(api_key="sk-...") as client:
        vectors = await client.embed("text-embedding-3-small", ["hello"])

The client implements :meth:`__aenter__` / :meth:`__aexit__` so it can be used
as an async context manager, which ensures the underlying ``aiohttp`` session
is properly closed on exit.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_BASE_URL: str = "https://api.openai.com/v1"
"""Default API base URL."""

_MAX_RETRIES: int = 3
"""Maximum number of attempts on rate-limit (HTTP 429) responses."""

_RETRY_BACKOFF_BASE: float = 1.0
"""Base delay in seconds for exponential backoff (1s, 2s, 4s, ...)."""

_REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=30)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class RemoteEmbeddingError(Exception):
    """Raised when the embedding API returns an error response.

    Attributes:
        message: Human-readable error description from the API.
        status_code: HTTP status code of the failed response.
        model: The model identifier that was requested, if available.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        model: str | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.model = model
        super().__init__(
            f"Embedding API error {status_code}"
            f"{f' (model={model})' if model else ''}: {message}"
        )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class RemoteEmbeddingClient:
    """Async client for an OpenAI-compatible embeddings endpoint.

    The HTTP session is created lazily on first use and reused for the
    lifetime of the client.  Call :meth:`close` (or use the client as an
    async context manager) to release the underlying connection pool.

    Args:
        api_key: Bearer token for the API.
        base_url: API base URL.  Override for proxies or self-hosted servers.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
    ) -> None:
        self._api_key: str = api_key
        self._base_url: str = base_url.rstrip("/")
        self._session: aiohttp.ClientSession | None = None

    # -- Async context manager ----------------------------------------------

    async def __aenter__(self) -> RemoteEmbeddingClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    # -- Internal helpers ---------------------------------------------------

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Return the shared session, creating it lazily if needed.

        The session is created outside ``__init__`` to avoid requiring an
        active event loop at construction time.
        """
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers=self._get_headers(),
                timeout=_REQUEST_TIMEOUT,
            )
        return self._session

    async def _request_with_retries(
        self,
        endpoint: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """POST *payload* with exponential-backoff retry on 429.

        Raises:
            RemoteEmbeddingError: On non-retryable API errors or after
                exhausting all retry attempts.
        """
        session = await self._ensure_session()
        url = f"{self._base_url}{endpoint}"
        last_error: RemoteEmbeddingError | None = None

        for attempt in range(_MAX_RETRIES):
            async with session.post(url, json=payload) as resp:
                if resp.status == 429:
                    delay = _RETRY_BACKOFF_BASE * (2 ** attempt)
                    logger.warning(
                        "Embedding API rate-limited (429). Retrying in %.1fs "
                        "(attempt %d/%d).",
                        delay,
                        attempt + 1,
                        _MAX_RETRIES,
                    )
                    last_error = RemoteEmbeddingError(
                        message="Rate limited (429)",
                        status_code=429,
                        model=payload.get("model"),
                    )
                    await asyncio.sleep(delay)
                    continue

                body: dict[str, Any] = await resp.json(content_type=None)

                if isinstance(body, dict) and "error" in body:
                    err = body["error"]
                    message = (
                        err.get("message", str(err))
                        if isinstance(err, dict)
                        else str(err)
                    )
                    raise RemoteEmbeddingError(
                        message=message,
                        status_code=resp.status,
                        model=payload.get("model"),
                    )

                if resp.status >= 400:
                    raise RemoteEmbeddingError(
                        message=f"HTTP {resp.status}: {body}",
                        status_code=resp.status,
                        model=payload.get("model"),
                    )

                return body

        raise last_error or RemoteEmbeddingError(
            message="Request failed after all retries.",
            status_code=429,
            model=payload.get("model"),
        )

    # -- Public API ---------------------------------------------------------

    async def embed(
        self,
        model: str,
        texts: list[str],
    ) -> list[list[float]]:
        """Get embeddings for a batch of texts.

        Args:
            model: Embedding model identifier (e.g. ``"text-embedding-3-small"``).
            texts: List of text strings to embed.

        Returns:
            A list of float vectors, one per input text, in input order.

        Raises:
            RemoteEmbeddingError: On API errors or rate-limit exhaustion.
        """
        if not texts:
            return []

        body = await self._request_with_retries(
            "/embeddings", {"model": model, "input": texts},
        )

        data_entries: list[dict[str, Any]] = body.get("data", [])
        if len(data_entries) != len(texts):
            logger.warning(
                "Embedding response returned %d vectors for %d inputs.",
                len(data_entries),
                len(texts),
            )

        # Sort by index to guarantee order matches the input.
        data_entries.sort(key=lambda d: d.get("index", 0))
        embeddings: list[list[float]] = [entry["embedding"] for entry in data_entries]

        usage: dict[str, Any] = body.get("usage", {})
        logger.debug(
            "Embedding: model=%s, texts=%d, tokens=%d",
            model,
            len(texts),
            int(usage.get("total_tokens", 0)),
        )
        return embeddings

    async def close(self) -> None:
        """Close the underlying HTTP session.  Safe to call multiple times."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
            self._session = None
            logger.debug("Embedding API session closed.")

    def __repr__(self) -> str:
        return f"RemoteEmbeddingClient(base_url={self._base_url!r})"
