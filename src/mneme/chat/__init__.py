"""Conversation history, context assembly and the system prompt."""

from .branches import BranchStore, NavigationError, NavigationErrorKind
from .context import AssembledContext, ContextAssembler, EmptyContextError
from .models import Role, Slot, Variant
from .prompt import RenderedPrompt, SystemPromptBuilder, humanize_elapsed

__all__ = [
    "AssembledContext",
    "BranchStore",
    "ContextAssembler",
    "EmptyContextError",
    "NavigationError",
    "NavigationErrorKind",
    "RenderedPrompt",
    "Role",
    "Slot",
    "SystemPromptBuilder",
    "Variant",
    "humanize_elapsed",
]
