"""Qdrant storage for long-term facts."""

from __future__ import annotations

import logging
import uuid

from qdrant_client import AsyncQdrantClient, models

from .models import Fact

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "mneme_memories"


def _user_filter(user_id: str) -> models.Filter:
    return models.Filter(
        must=[models.FieldCondition(key="user_id", match=models.MatchValue(value=user_id))]
    )


class VectorMemoryStore:
    """Append-only vector storage for facts, scoped per user.

    All users share one collection; every query filters on the
    ``user_id`` payload field.
    """

    def __init__(
        self,
        client: AsyncQdrantClient,
        vector_size: int,
        collection: str = DEFAULT_COLLECTION,
    ) -> None:
        """Initialize the store.

        Args:
            client: Qdrant client (``location=":memory:"`` works for tests).
            vector_size: Dimension of the embeddings that will be stored.
            collection: Collection name.
        """
        self.client = client
        self.vector_size = vector_size
        self.collection = collection
        self._ready = False

    async def _ensure_collection(self) -> None:
        if self._ready:
            return
        if not await self.client.collection_exists(collection_name=self.collection):
            await self.client.create_collection(
                collection_name=self.collection,
                vectors_config=models.VectorParams(
                    size=self.vector_size, distance=models.Distance.COSINE
                ),
            )
            logger.info(
                "Created collection %s (%d dims)", self.collection, self.vector_size
            )
        self._ready = True

    async def health_check(self, user_id: str) -> int:
        """Make sure the collection is usable and return the user's fact count."""
        await self._ensure_collection()
        return await self.count(user_id)

    async def count(self, user_id: str) -> int:
        await self._ensure_collection()
        result = await self.client.count(
            collection_name=self.collection,
            count_filter=_user_filter(user_id),
            exact=True,
        )
        return result.count

    async def store(self, vector: list[float], fact: Fact) -> Fact:
        """Append a fact and return it with its point id."""
        if len(vector) != self.vector_size:
            raise ValueError(
                f"Vector has {len(vector)} dimensions, collection expects {self.vector_size}"
            )
        await self._ensure_collection()
        point_id = str(uuid.uuid4())
        await self.client.upsert(
            collection_name=self.collection,
            points=[models.PointStruct(id=point_id, vector=vector, payload=fact.to_payload())],
        )
        return Fact(
            content=fact.content,
            user_id=fact.user_id,
            created_at=fact.created_at,
            id=point_id,
        )

    async def search(self, vector: list[float], user_id: str, k: int) -> list[Fact]:
        """Return up to ``k`` of the user's facts, most similar first."""
        if k <= 0:
            return []
        await self._ensure_collection()
        response = await self.client.query_points(
            collection_name=self.collection,
            query=vector,
            query_filter=_user_filter(user_id),
            limit=k,
            with_payload=True,
        )
        return [
            Fact.from_payload(point.payload or {}, id=str(point.id), score=point.score)
            for point in response.points
        ]

    async def _all(self, user_id: str) -> list[Fact]:
        await self._ensure_collection()
        facts: list[Fact] = []
        offset = None
        while True:
            points, offset = await self.client.scroll(
                collection_name=self.collection,
                scroll_filter=_user_filter(user_id),
                limit=256,
                offset=offset,
                with_payload=True,
                with_vectors=False,
            )
            facts.extend(Fact.from_payload(p.payload or {}, id=str(p.id)) for p in points)
            if offset is None:
                break
        facts.sort(key=lambda fact: fact.created_at)
        return facts

    async def recent(self, user_id: str, limit: int) -> list[Fact]:
        """The newest ``limit`` facts for a user, oldest first."""
        if limit <= 0:
            return []
        return (await self._all(user_id))[-limit:]

    async def prune(self, user_id: str, keep: int) -> int:
        """Delete all but the newest ``keep`` facts. Returns how many were removed."""
        facts = await self._all(user_id)
        stale = facts[: max(len(facts) - max(keep, 0), 0)]
        if not stale:
            return 0
        await self.client.delete(
            collection_name=self.collection,
            points_selector=models.PointIdsList(points=[fact.id for fact in stale if fact.id]),
        )
        logger.info("Pruned %d fact(s) for %s", len(stale), user_id)
        return len(stale)

    async def close(self) -> None:
        await self.client.close()
