"""Tool interface and registry."""

from .base import Tool, ToolResult
from .registry import ToolNotFoundError, ToolRegistry

__all__ = ["Tool", "ToolNotFoundError", "ToolRegistry", "ToolResult"]
