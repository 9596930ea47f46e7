"""Session management and per-user concurrency control."""

from .manager import ChatSession, SessionRegistry, StaleControl, UserRef

__all__ = ["ChatSession", "SessionRegistry", "StaleControl", "UserRef"]
