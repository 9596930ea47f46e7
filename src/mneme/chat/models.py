"""Data models for the branching conversation history."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Hashable


class Role(str, Enum):
    """Author of a message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Variant:
    """One concrete message inside a slot.

    Attributes:
        role: Who wrote the message.
        content: Message text.
        sent_at: When the message was created (UTC).
        metadata: Free-form role-specific fields.
    """

    role: Role
    content: str
    sent_at: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def system(cls, content: str, **metadata: Any) -> "Variant":
        return cls(role=Role.SYSTEM, content=content, metadata=metadata)

    @classmethod
    def user(cls, content: str, **metadata: Any) -> "Variant":
        return cls(role=Role.USER, content=content, metadata=metadata)

    @classmethod
    def assistant(cls, content: str, **metadata: Any) -> "Variant":
        return cls(role=Role.ASSISTANT, content=content, metadata=metadata)

    def to_message(self) -> dict[str, Any]:
        """Completion API format (role and content only)."""
        return {"role": self.role.value, "content": self.content}


@dataclass
class Slot:
    """A position in the conversation holding alternative variants.

    The variant list only ever grows; ``cursor`` selects which one is
    shown and sent as context.
    """

    key: Hashable
    message_id: int | None
    variants: list[Variant]
    cursor: int = 0

    def __post_init__(self) -> None:
        if not self.variants:
            raise ValueError("A slot needs at least one variant")
        if not 0 <= self.cursor < len(self.variants):
            raise ValueError(f"Cursor {self.cursor} out of range")

    def __len__(self) -> int:
        return len(self.variants)

    @property
    def selected(self) -> Variant:
        return self.variants[self.cursor]

    @property
    def can_go_back(self) -> bool:
        return self.cursor > 0

    @property
    def can_go_forward(self) -> bool:
        return self.cursor < len(self.variants) - 1

    @property
    def is_ephemeral(self) -> bool:
        return self.message_id is None
