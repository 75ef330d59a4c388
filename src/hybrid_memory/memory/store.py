from __future__ import annotations

import asyncio
import logging
import time
import uuid
from pathlib import Path
from typing import Any, Callable, TypeVar

from qdrant_client import QdrantClient
from qdrant_client.models import Distance, PointStruct, VectorParams

from .types import MemoryCategory, ScoredVector, StorageError, VectorRecord

log = logging.getLogger(__name__)

T = TypeVar("T")

COLLECTION_NAME = "memories"


class VectorStore:
    """Embedded Qdrant collection of memory embeddings.

    The client and collection are created lazily on first use.  Concurrent
    first calls await one shared initialisation task, so the collection is
    created at most once.  A failed initialisation is forgotten and retried
    by the next caller.

    The store is append-only: records are created, searched and counted,
    never updated or deleted.
    """

    def __init__(
        self,
        path: str | Path,
        dimensions: int,
        collection: str = COLLECTION_NAME,
        client: QdrantClient | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.path = str(path)
        self.dimensions = dimensions
        self.collection = collection
        self._client = client
        self._clock = clock
        self._init_task: asyncio.Future[None] | None = None
        self._ready = False

    async def _ensure_client(self) -> QdrantClient:
        """Return the client, initialising the collection on first use."""
        if self._ready and self._client is not None:
            return self._client
        task = self._init_task
        if task is None:
            task = self._init_task = asyncio.ensure_future(self._initialize())
        try:
            await asyncio.shield(task)
        except Exception:
            if self._init_task is task:
                self._init_task = None
            raise
        assert self._client is not None
        return self._client

    async def _initialize(self) -> None:
        """Open the embedded client and make sure the collection exists."""
        if self._client is None:
            self._client = await self._call(self._open_client)
        client = self._client
        collections = await self._call(
            lambda: [c.name for c in client.get_collections().collections]
        )
        if self.collection not in collections:
            await self._call(
                lambda: client.create_collection(
                    collection_name=self.collection,
                    vectors_config=VectorParams(size=self.dimensions, distance=Distance.EUCLID),
                )
            )
            log.info(f"Created vector collection: {self.collection} (dims={self.dimensions})")
        else:
            log.info(f"Using existing vector collection: {self.collection}")
        self._ready = True

    def _open_client(self) -> QdrantClient:
        if self.path == ":memory:":
            return QdrantClient(location=":memory:")
        resolved = Path(self.path).expanduser()
        resolved.mkdir(parents=True, exist_ok=True)
        return QdrantClient(path=str(resolved))

    async def _call(self, fn: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Vector store operation failed: {e}") from e

    async def store(
        self,
        text: str,
        vector: list[float],
        importance: float = 0.7,
        category: MemoryCategory = MemoryCategory.OTHER,
    ) -> VectorRecord:
        """Append a record. Returns it with its new id and timestamp."""
        if len(vector) != self.dimensions:
            raise StorageError(
                f"Vector has {len(vector)} dimensions, collection expects {self.dimensions}"
            )
        client = await self._ensure_client()
        record = VectorRecord(
            id=str(uuid.uuid4()),
            text=text,
            vector=list(vector),
            importance=importance,
            category=category,
            created_at=int(self._clock()),
        )
        point = PointStruct(
            id=record.id,
            vector=record.vector,
            payload={
                "text": record.text,
                "importance": record.importance,
                "category": record.category.value,
                "created_at": record.created_at,
            },
        )
        await self._call(lambda: client.upsert(collection_name=self.collection, points=[point]))
        return record

    async def search(
        self,
        vector: list[float],
        limit: int = 5,
        min_score: float = 0.3,
    ) -> list[ScoredVector]:
        """Nearest neighbours scored as ``1 / (1 + distance)``, best first.

        Results scoring below *min_score* are dropped.
        """
        if limit <= 0:
            return []
        client = await self._ensure_client()
        points = await self._call(
            lambda: client.query_points(
                collection_name=self.collection,
                query=vector,
                limit=limit,
                with_payload=True,
                with_vectors=True,
            ).points
        )
        results = []
        for point in points:
            # Euclidean scores are distances; the sign differs between server
            # and embedded mode.
            distance = abs(point.score)
            score = 1.0 / (1.0 + distance)
            if score < min_score:
                continue
            results.append(ScoredVector(record=self._point_to_record(point), score=score))
        results.sort(key=lambda r: r.score, reverse=True)
        return results

    async def count(self) -> int:
        """Get total number of records."""
        client = await self._ensure_client()
        result = await self._call(
            lambda: client.count(collection_name=self.collection, exact=True)
        )
        return result.count

    async def close(self) -> None:
        if self._client is not None:
            client = self._client
            await self._call(client.close)
            self._client = None
            self._ready = False
            self._init_task = None

    @property
    def is_initialized(self) -> bool:
        return self._ready

    @staticmethod
    def _point_to_record(point: Any) -> VectorRecord:
        payload = point.payload or {}
        raw_vector = point.vector if isinstance(point.vector, list) else []
        try:
            category = MemoryCategory(payload.get("category", "other"))
        except ValueError:
            category = MemoryCategory.OTHER
        return VectorRecord(
            id=str(point.id),
            text=payload.get("text", ""),
            vector=list(raw_vector),
            importance=float(payload.get("importance", 0.0)),
            category=category,
            created_at=int(payload.get("created_at", 0)),
        )
