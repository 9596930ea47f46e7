"""Long-term memory: embedding, vector storage and summarization."""

from .embedder import Embedder, SentenceTransformerEmbedder
from .models import ASSISTANT_TOKEN, USER_TOKEN, Fact
from .pipeline import MemoryPipeline
from .store import VectorMemoryStore
from .summarizer import SummarizationError, Summarizer
from .tools import MemoryRecallTool, MemoryStoreTool

__all__ = [
    "ASSISTANT_TOKEN",
    "Embedder",
    "Fact",
    "MemoryPipeline",
    "MemoryRecallTool",
    "MemoryStoreTool",
    "SentenceTransformerEmbedder",
    "SummarizationError",
    "Summarizer",
    "USER_TOKEN",
    "VectorMemoryStore",
]
