"""Completion agent."""

from .loop import CompletionAgent, CompletionResult, StopReason, clean_reply

__all__ = ["CompletionAgent", "CompletionResult", "StopReason", "clean_reply"]
