"""Memory tools the model can call during a completion."""

import json
from typing import Any

from ..tools.base import Tool, ToolResult
from .pipeline import DEFAULT_RECALL_LIMIT, MemoryPipeline


class MemoryRecallTool(Tool):
    """Tool for searching long-term memory."""

    def __init__(self, memory: MemoryPipeline, limit: int = DEFAULT_RECALL_LIMIT) -> None:
        self.memory = memory
        self.limit = limit

    @property
    def name(self) -> str:
        return "memory_recall"

    @property
    def description(self) -> str:
        return (
            "Recall information from previous conversations that is not in the "
            "current context. Use a short description of what you want to remember."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "What to search for in long-term memory",
                },
            },
            "required": ["query"],
        }

    async def execute(self, **kwargs: Any) -> ToolResult:
        query = kwargs.get("query", "")

        if not query:
            return ToolResult(success=False, output="", error="'query' is required")

        memories = await self.memory.recall(query, self.limit)
        return ToolResult(
            success=True,
            output=json.dumps({"memories": memories}, ensure_ascii=False),
            metadata={"count": len(memories)},
        )


class MemoryStoreTool(Tool):
    """Tool for saving a fact to long-term memory."""

    def __init__(self, memory: MemoryPipeline) -> None:
        self.memory = memory

    @property
    def name(self) -> str:
        return "memory_store"

    @property
    def description(self) -> str:
        return (
            "Store important information in long-term memory so it can be recalled "
            "later, preferably as bullet points. Use <user> and <assistant> to refer "
            "to the people in the conversation."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "memory": {
                    "type": "string",
                    "description": "The information to remember",
                },
            },
            "required": ["memory"],
        }

    async def execute(self, **kwargs: Any) -> ToolResult:
        memory = kwargs.get("memory", "")

        if not memory:
            return ToolResult(success=False, output="", error="'memory' is required")

        fact = await self.memory.store(memory)
        return ToolResult(success=True, output="stored", metadata={"id": fact.id})
