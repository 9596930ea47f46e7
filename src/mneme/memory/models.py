"""Data models for the long-term memory system."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

USER_TOKEN = "<user>"
ASSISTANT_TOKEN = "<assistant>"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Fact:
    """A long-term fact about a user, as stored in the vector store.

    Attributes:
        content: Summary text, with ``<user>``/``<assistant>`` placeholders.
        user_id: Scope the fact belongs to.
        created_at: ISO timestamp when stored.
        id: Vector store point id, None until stored.
        score: Similarity score when returned from a search.
    """

    content: str
    user_id: str
    created_at: str = field(default_factory=_now_iso)
    id: str | None = None
    score: float | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "user_id": self.user_id,
            "created_at": self.created_at,
        }

    @classmethod
    def from_payload(
        cls, payload: dict[str, Any], id: str | None = None, score: float | None = None
    ) -> "Fact":
        return cls(
            content=str(payload.get("content", "")),
            user_id=str(payload.get("user_id", "")),
            created_at=str(payload.get("created_at", "")),
            id=id,
            score=score,
        )

    def with_names(self, user_name: str, assistant_name: str) -> str:
        """Content with placeholders replaced by display names."""
        return self.content.replace(USER_TOKEN, user_name).replace(
            ASSISTANT_TOKEN, assistant_name
        )
