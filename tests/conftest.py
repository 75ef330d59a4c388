"""Shared fixtures for the hybrid memory test suite."""

import hashlib
import math
from unittest.mock import AsyncMock, MagicMock

import pytest

from hybrid_memory.memory.engine import HybridMemory
from hybrid_memory.memory.facts import FactStore
from hybrid_memory.memory.store import VectorStore
from hybrid_memory.models.embeddings import EmbeddingProvider

EMBEDDING_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
EMBEDDING_DIMS = 384


class FakeClock:
    """Settable epoch-seconds clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class HashEmbeddingClient:
    """Deterministic embedding client: identical text, identical vector.

    Vectors are centred and normalised, so different texts land far apart
    (well below the duplicate threshold) while identical texts coincide.
    """

    def __init__(self, dimensions: int = EMBEDDING_DIMS):
        self.dimensions = dimensions
        self.calls = 0

    async def embed(self, model, texts):
        self.calls += 1
        return [self._vector(t) for t in texts]

    async def close(self):
        pass

    def _vector(self, text):
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        values = [b / 255.0 - 0.5 for b in digest]
        values = (values * (self.dimensions // len(values) + 1))[: self.dimensions]
        norm = math.sqrt(sum(v * v for v in values)) or 1.0
        return [v / norm for v in values]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fact_store(tmp_path, clock):
    store = FactStore(tmp_path / "facts.db", clock=clock)
    yield store
    store.close()


@pytest.fixture
def vector_store(clock):
    return VectorStore(":memory:", EMBEDDING_DIMS, clock=clock)


@pytest.fixture
def embedding_client():
    return HashEmbeddingClient()


@pytest.fixture
def fake_embeddings(embedding_client):
    return EmbeddingProvider(EMBEDDING_MODEL, local_client=embedding_client)


@pytest.fixture
def memory(fact_store, vector_store, fake_embeddings):
    return HybridMemory(fact_store, vector_store, embeddings=fake_embeddings)


@pytest.fixture
def mock_remote():
    """Mock remote embedding client."""
    client = AsyncMock()
    client.embed = AsyncMock()
    client.close = AsyncMock()
    return client


@pytest.fixture
def mock_local():
    """Mock local embedding client."""
    client = AsyncMock()
    client.embed = AsyncMock()
    client.close = AsyncMock()
    return client


@pytest.fixture
def mock_qdrant():
    """Mock Qdrant client."""
    client = MagicMock()
    client.get_collections = MagicMock()
    client.create_collection = MagicMock()
    client.upsert = MagicMock()
    client.query_points = MagicMock()
    client.count = MagicMock()
    client.close = MagicMock()
    return client
