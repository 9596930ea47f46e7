"""Context window assembly with short-term memory eviction."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from .branches import BranchStore
from .models import Role, Variant, utcnow
from .prompt import SystemPromptBuilder, humanize_elapsed

logger = logging.getLogger(__name__)

NUDGE_TEMPLATE = (
    "*it's been around {elapsed} since you last said something, and the user did not "
    "respond. your next response should attempt to pull the user back into the "
    "conversation. please respond once again, making sure to keep the same tone and "
    "style as you normally would, following all previous instructions, yet keeping the "
    "time difference in mind. your response should only contain the actual response, "
    "not your thoughts or anything else.*\n\n\"...\""
)


class EmptyContextError(Exception):
    """Raised when an operation needs a previous message and there is none."""


@dataclass
class AssembledContext:
    """Messages for a completion call plus anything evicted from the window."""

    messages: list[Variant]
    evicted: list[Variant] | None = None

    @property
    def system_prompt(self) -> str:
        return self.messages[0].content

    def to_messages(self) -> list[dict[str, str]]:
        return [variant.to_message() for variant in self.messages]


def eviction_count(size: int, max_stm: int) -> int:
    """Slots to drop so a full window shrinks to 80% of capacity."""
    if size < max_stm:
        return 0
    return size - (max_stm * 4) // 5


class ContextAssembler:
    """Builds the flat message list sent to the completion model."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self.clock = clock

    def time_since_last(self, store: BranchStore) -> timedelta:
        latest = store.latest()
        if latest is None:
            raise EmptyContextError("Context is empty, nothing to measure idle time from")
        return self.clock() - latest.selected.sent_at

    def assemble(
        self,
        store: BranchStore,
        builder: SystemPromptBuilder,
        recalling: bool,
    ) -> AssembledContext:
        """Assemble the window, evicting the oldest slots when it is full.

        The returned messages still include evicted slots for this call;
        they are removed from ``store`` so later calls no longer see them.
        """
        now = self.clock()

        if len(store) == 0:
            prompt = builder.render(now, recalling, now=now)
            return AssembledContext(messages=[Variant.system(prompt.text)])

        history = [slot.selected for slot in store]
        last_message_time = history[-1].sent_at

        evicted = None
        to_remove = eviction_count(len(store), builder.max_stm)
        if to_remove:
            logger.info("Context window full, evicting %d slot(s)", to_remove)
            evicted = store.drain_oldest(to_remove)

        prompt = builder.render(last_message_time, recalling, now=now)
        return AssembledContext(
            messages=[Variant.system(prompt.text), *history],
            evicted=evicted,
        )

    def assemble_for_regenerate(
        self,
        store: BranchStore,
        builder: SystemPromptBuilder,
        recalling: bool,
    ) -> AssembledContext:
        """Like ``assemble`` but hides the reply that is being replaced."""
        context = self.assemble(store, builder, recalling)
        for index in range(len(context.messages) - 1, 0, -1):
            if context.messages[index].role == Role.ASSISTANT:
                del context.messages[index]
                break
        return context

    def assemble_for_nudge(
        self,
        store: BranchStore,
        builder: SystemPromptBuilder,
        recalling: bool,
    ) -> AssembledContext:
        """Assemble a proactive turn after the user went quiet.

        Records the synthetic user prompt as an ephemeral slot.
        """
        elapsed = self.time_since_last(store)
        context = self.assemble(store, builder, recalling)

        nudge = Variant(
            role=Role.USER,
            content=NUDGE_TEMPLATE.format(elapsed=humanize_elapsed(elapsed)),
            sent_at=self.clock(),
            metadata={"nudge": True},
        )
        store.append(nudge)
        context.messages.append(nudge)
        return context
