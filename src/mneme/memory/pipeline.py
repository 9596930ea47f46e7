"""Memory pipeline: recall, store and summarize long-term facts."""

from __future__ import annotations

import logging

from ..chat.models import Variant
from .embedder import Embedder
from .models import Fact
from .store import VectorMemoryStore
from .summarizer import SummarizationError, Summarizer

logger = logging.getLogger(__name__)

DEFAULT_RECALL_LIMIT = 5


class MemoryPipeline:
    """Per-user view over the embedder, vector store and summarizer.

    The store is shared by every user; this object pins the user scope
    and the display names used to fill fact placeholders.
    """

    def __init__(
        self,
        embedder: Embedder,
        store: VectorMemoryStore,
        summarizer: Summarizer,
        user_id: str,
        user_name: str,
        assistant_name: str,
    ) -> None:
        self.embedder = embedder
        self.store_backend = store
        self.summarizer = summarizer
        self.user_id = user_id
        self.user_name = user_name
        self.assistant_name = assistant_name

    async def recall(self, query_text: str | None, k: int = DEFAULT_RECALL_LIMIT) -> list[str]:
        """Facts relevant to ``query_text``, with display names filled in.

        An empty query returns nothing without touching the embedder.
        """
        if not query_text or not query_text.strip():
            return []

        vector = await self.embedder.embed(query_text)
        facts = await self.store_backend.search(vector, self.user_id, k)
        if facts:
            logger.info("Recalled %d memories for %s", len(facts), self.user_id)
        return [fact.with_names(self.user_name, self.assistant_name) for fact in facts]

    async def store(self, summary_text: str) -> Fact:
        """Embed a summary and append it to the user's facts."""
        vector = await self.embedder.embed(summary_text)
        fact = await self.store_backend.store(
            vector, Fact(content=summary_text, user_id=self.user_id)
        )
        logger.info("Stored memory %s for %s", fact.id, self.user_id)
        return fact

    async def summarize(self, history: list[Variant]) -> str:
        return await self.summarizer.summarize(history, self.user_name, self.assistant_name)

    async def remember_evicted(self, history: list[Variant]) -> Fact | None:
        """Summarize evicted turns and store the result.

        Returns None when the summarizer produced nothing usable. Storage
        failures propagate to the caller.
        """
        try:
            summary = await self.summarize(history)
        except SummarizationError as e:
            logger.warning("Skipping memory storage for %s: %s", self.user_id, e)
            return None

        logger.debug("Summary for %s:\n%s", self.user_id, summary)
        return await self.store(summary)

    async def recent(self, limit: int) -> list[str]:
        """Newest stored facts, oldest first, with display names filled in."""
        facts = await self.store_backend.recent(self.user_id, limit)
        return [fact.with_names(self.user_name, self.assistant_name) for fact in facts]
