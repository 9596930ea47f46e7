"""Base tool interface."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class ToolResult:
    """Result from tool execution."""

    success: bool
    output: str
    error: str | None = None
    metadata: dict[str, Any] | None = None

    def to_content(self, tool_name: str) -> str:
        """Tool message content sent back to the model."""
        result = self.output if self.success else f"error: {self.error}"
        return json.dumps({"name": tool_name, "result": result}, ensure_ascii=False)


class Tool(ABC):
    """Base interface for tools the model can call."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Tool description for the model."""
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema for tool parameters."""
        ...

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool with given arguments."""
        ...

    def get_schema(self) -> dict[str, Any]:
        """Tool definition for function calling."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def validate_args(self, args: dict[str, Any]) -> tuple[bool, str | None]:
        """Check required text arguments are present and non-blank.

        Returns (valid, error_message).
        """
        required = self.parameters.get("required", [])
        properties = self.parameters.get("properties", {})

        for key in required:
            value = args.get(key)
            if value is None:
                return False, f"Missing required argument: {key}"
            if properties.get(key, {}).get("type") == "string" and not str(value).strip():
                return False, f"Argument '{key}' must not be empty"

        for key, value in args.items():
            if properties.get(key, {}).get("type") == "string" and not isinstance(value, str):
                return False, f"Argument '{key}' must be a string"

        return True, None
