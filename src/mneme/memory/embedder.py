"""Text embedding backends."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "all-MiniLM-L6-v2"


@runtime_checkable
class Embedder(Protocol):
    """Turns text into a fixed-size vector."""

    @property
    def dimension(self) -> int: ...

    async def embed(self, text: str) -> list[float]: ...


class SentenceTransformerEmbedder:
    """Embedder backed by a local sentence-transformers model.

    The model is loaded on first use. Encoding is CPU bound, so it runs
    in a worker thread to keep the event loop responsive.
    """

    def __init__(self, model_name: str = DEFAULT_EMBEDDING_MODEL) -> None:
        self.model_name = model_name
        self._model: SentenceTransformer | None = None

    def _get_model(self) -> SentenceTransformer:
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            self._model = SentenceTransformer(self.model_name)
            logger.info(
                "Loaded embedding model %s (%d dims)",
                self.model_name,
                self._model.get_sentence_embedding_dimension(),
            )
        return self._model

    @property
    def dimension(self) -> int:
        return int(self._get_model().get_sentence_embedding_dimension())

    def _encode(self, text: str) -> list[float]:
        return self._get_model().encode(text, convert_to_numpy=True).tolist()

    async def embed(self, text: str) -> list[float]:
        return await asyncio.to_thread(self._encode, text)
