"""Tests for the embedding registry, provider and clients."""

import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from hybrid_memory.config import HybridMemorySettings
from hybrid_memory.models.embeddings import (
    EmbeddingError,
    EmbeddingProvider,
    build_embedding_provider,
)
from hybrid_memory.models.local import LocalEmbeddingClient
from hybrid_memory.models.registry import (
    ModelProvider,
    UnsupportedModelError,
    get_embedding,
    vector_dims_for_model,
)
from hybrid_memory.models.remote import RemoteEmbeddingClient, RemoteEmbeddingError

LOCAL_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
REMOTE_MODEL = "text-embedding-3-small"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def test_dims_for_known_models():
    assert vector_dims_for_model("text-embedding-3-small") == 1536
    assert vector_dims_for_model("text-embedding-3-large") == 3072
    assert vector_dims_for_model(LOCAL_MODEL) == 384


def test_dims_for_local_path():
    assert vector_dims_for_model("/opt/models/all-MiniLM-L6-v2/") == 384
    assert get_embedding("/opt/models/all-mpnet-base-v2").dimensions == 768


def test_dims_heuristic():
    assert vector_dims_for_model("hf:ggml-org/embeddinggemma-300m-qat-Q8_0.gguf") == 768


def test_unknown_model():
    with pytest.raises(UnsupportedModelError, match="Unsupported embedding model"):
        vector_dims_for_model("word2vec")
    assert get_embedding("word2vec") is None


# ---------------------------------------------------------------------------
# EmbeddingProvider
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_local_model_uses_local_client(mock_local, mock_remote):
    mock_local.embed.return_value = [[0.1] * 384, [0.2] * 384]
    provider = EmbeddingProvider(LOCAL_MODEL, remote_client=mock_remote, local_client=mock_local)

    vectors = await provider.embed(["a", "b"])

    assert provider.dimensions == 384
    assert provider.provider is ModelProvider.LOCAL
    assert len(vectors) == 2
    mock_local.embed.assert_awaited_once_with(LOCAL_MODEL, ["a", "b"])
    mock_remote.embed.assert_not_called()


@pytest.mark.asyncio
async def test_remote_model_uses_remote_client(mock_remote):
    mock_remote.embed.return_value = [[0.5] * 1536]
    provider = EmbeddingProvider(REMOTE_MODEL, remote_client=mock_remote)

    vector = await provider.embed_one("hello")

    assert vector == [0.5] * 1536
    assert provider.provider is ModelProvider.REMOTE


@pytest.mark.asyncio
async def test_empty_input_raises(mock_local):
    provider = EmbeddingProvider(LOCAL_MODEL, local_client=mock_local)
    with pytest.raises(EmbeddingError, match="empty"):
        await provider.embed([])


@pytest.mark.asyncio
async def test_vector_count_mismatch_raises(mock_local):
    mock_local.embed.return_value = [[0.1] * 384]
    provider = EmbeddingProvider(LOCAL_MODEL, local_client=mock_local)
    with pytest.raises(EmbeddingError, match="received 1 vectors"):
        await provider.embed(["a", "b"])


@pytest.mark.asyncio
async def test_backend_failure_is_wrapped(mock_remote):
    mock_remote.embed.side_effect = RemoteEmbeddingError("bad key", status_code=401)
    provider = EmbeddingProvider(REMOTE_MODEL, remote_client=mock_remote)
    with pytest.raises(EmbeddingError) as excinfo:
        await provider.embed_one("hello")
    assert isinstance(excinfo.value.__cause__, RemoteEmbeddingError)


@pytest.mark.asyncio
async def test_missing_client_raises():
    provider = EmbeddingProvider(REMOTE_MODEL)
    with pytest.raises(EmbeddingError, match="No remote embedding client"):
        await provider.embed_one("hello")


def test_unknown_model_raises():
    with pytest.raises(EmbeddingError, match="Unsupported"):
        EmbeddingProvider("word2vec")


@pytest.mark.asyncio
async def test_close_closes_clients(mock_local):
    provider = EmbeddingProvider(LOCAL_MODEL, local_client=mock_local)
    await provider.close()
    mock_local.close.assert_awaited_once()


def test_build_remote_provider():
    with patch.dict(os.environ, {}, clear=True):
        settings = HybridMemorySettings(
            EMBEDDING_PROVIDER="remote",
            EMBEDDING_API_KEY="sk-test",
            EMBEDDING_BASE_URL="http://proxy.local/v1/",
        )
    provider = build_embedding_provider(settings)
    assert provider.provider is ModelProvider.REMOTE
    assert isinstance(provider._remote, RemoteEmbeddingClient)
    assert provider._remote._base_url == "http://proxy.local/v1"
    assert provider.dimensions == 1536


def test_build_local_provider():
    path = "/models/embeddinggemma-300m"
    with patch.dict(os.environ, {}, clear=True):
        settings = HybridMemorySettings(EMBEDDING_MODEL_PATH=path, EMBEDDING_CACHE_DIR="/tmp/cache")
    provider = build_embedding_provider(settings)
    assert provider.provider is ModelProvider.LOCAL
    assert isinstance(provider._local, LocalEmbeddingClient)
    assert provider._local.model_path == path
    assert provider._local.cache_folder == "/tmp/cache"
    assert provider.dimensions == 768
    assert not provider._local.is_loaded


# ---------------------------------------------------------------------------
# RemoteEmbeddingClient
# ---------------------------------------------------------------------------


class FakeResponse:
    def __init__(self, status, body):
        self.status = status
        self._body = body

    async def json(self, content_type=None):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


def _client_with(*responses):
    client = RemoteEmbeddingClient(api_key="sk-test", base_url="https://api.example.com/v1")
    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    session.post = MagicMock(side_effect=list(responses))
    client._session = session
    return client, session


@pytest.mark.asyncio
async def test_remote_embed_orders_by_index():
    client, session = _client_with(FakeResponse(200, {
        "data": [
            {"index": 1, "embedding": [2.0]},
            {"index": 0, "embedding": [1.0]},
        ],
        "usage": {"total_tokens": 4},
    }))

    vectors = await client.embed(REMOTE_MODEL, ["first", "second"])

    assert vectors == [[1.0], [2.0]]
    args, kwargs = session.post.call_args
    assert args[0] == "https://api.example.com/v1/embeddings"
    assert kwargs["json"] == {"model": REMOTE_MODEL, "input": ["first", "second"]}


@pytest.mark.asyncio
async def test_remote_error_body_raises():
    client, _ = _client_with(FakeResponse(401, {"error": {"message": "Incorrect API key"}}))
    with pytest.raises(RemoteEmbeddingError, match="Incorrect API key") as excinfo:
        await client.embed(REMOTE_MODEL, ["hello"])
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_remote_http_error_without_error_body():
    client, _ = _client_with(FakeResponse(503, {"detail": "overloaded"}))
    with pytest.raises(RemoteEmbeddingError) as excinfo:
        await client.embed(REMOTE_MODEL, ["hello"])
    assert excinfo.value.status_code == 503


@pytest.mark.asyncio
async def test_remote_retries_rate_limit():
    client, session = _client_with(
        FakeResponse(429, {}),
        FakeResponse(200, {"data": [{"index": 0, "embedding": [1.0]}]}),
    )
    with patch("hybrid_memory.models.remote.asyncio.sleep", new=AsyncMock()) as sleep:
        vectors = await client.embed(REMOTE_MODEL, ["hello"])
    assert vectors == [[1.0]]
    assert session.post.call_count == 2
    sleep.assert_awaited_once_with(1.0)


@pytest.mark.asyncio
async def test_remote_gives_up_after_retries():
    client, session = _client_with(*(FakeResponse(429, {}) for _ in range(3)))
    with patch("hybrid_memory.models.remote.asyncio.sleep", new=AsyncMock()):
        with pytest.raises(RemoteEmbeddingError) as excinfo:
            await client.embed(REMOTE_MODEL, ["hello"])
    assert excinfo.value.status_code == 429
    assert session.post.call_count == 3


@pytest.mark.asyncio
async def test_remote_empty_input_makes_no_request():
    client, session = _client_with()
    assert await client.embed(REMOTE_MODEL, []) == []
    session.post.assert_not_called()


@pytest.mark.asyncio
async def test_remote_close_is_idempotent():
    client, session = _client_with()
    await client.close()
    await client.close()
    session.close.assert_awaited_once()


# ---------------------------------------------------------------------------
# LocalEmbeddingClient
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_local_model_loaded_once():
    row = MagicMock()
    row.tolist.return_value = [0.1, 0.2]
    encoder = MagicMock()
    encoder.encode.return_value = [row]
    client = LocalEmbeddingClient("sentence-transformers/all-MiniLM-L6-v2")

    with patch.object(LocalEmbeddingClient, "_load", return_value=encoder) as load:
        first = await client.embed(LOCAL_MODEL, ["hello"])
        second = await client.embed(LOCAL_MODEL, ["hello"])

    assert first == second == [[0.1, 0.2]]
    load.assert_called_once()
    assert encoder.encode.call_args.kwargs["normalize_embeddings"] is True
    assert client.is_loaded
