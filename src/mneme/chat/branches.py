"""Branching message history.

The store keeps conversation order (insertion order of slots) and lets
each slot hold several alternative replies. Navigation only moves the
slot's cursor; regenerating appends a new variant instead of editing.
"""

from __future__ import annotations

import itertools
import logging
from enum import Enum
from typing import Hashable, Iterator

from .models import Role, Slot, Variant

logger = logging.getLogger(__name__)


class NavigationErrorKind(Enum):
    """Why a navigation request could not be honoured."""

    AT_START = "at_start"
    AT_END = "at_end"
    NOT_FOUND = "not_found"
    NOT_REGENERABLE = "not_regenerable"


_NAVIGATION_MESSAGES = {
    NavigationErrorKind.AT_START: "This is already the first reply.",
    NavigationErrorKind.AT_END: "This is already the latest reply.",
    NavigationErrorKind.NOT_FOUND: "That message is no longer in my memory.",
    NavigationErrorKind.NOT_REGENERABLE: "Only my own replies can be regenerated.",
}


class NavigationError(Exception):
    """Raised when a slot cannot be navigated as requested."""

    def __init__(self, kind: NavigationErrorKind, slot_id: Hashable | None = None) -> None:
        self.kind = kind
        self.slot_id = slot_id
        super().__init__(_NAVIGATION_MESSAGES[kind])

    @property
    def user_message(self) -> str:
        return _NAVIGATION_MESSAGES[self.kind]


class BranchStore:
    """Insertion-ordered mapping of slot keys to slots."""

    def __init__(self) -> None:
        self._slots: dict[Hashable, Slot] = {}
        self._ephemeral_ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._slots)

    def __iter__(self) -> Iterator[Slot]:
        return iter(list(self._slots.values()))

    def __contains__(self, slot_id: object) -> bool:
        return slot_id in self._slots

    def append(self, variant: Variant, slot_id: int | None = None) -> Hashable:
        """Add a variant, creating a slot if needed.

        Args:
            variant: The message to store.
            slot_id: External message id. ``None`` creates an ephemeral slot.

        Returns:
            The key of the slot that now holds the variant.
        """
        if slot_id is None:
            key: Hashable = f"ephemeral:{next(self._ephemeral_ids)}"
            self._slots[key] = Slot(key=key, message_id=None, variants=[variant])
            return key

        slot = self._slots.get(slot_id)
        if slot is None:
            self._slots[slot_id] = Slot(key=slot_id, message_id=slot_id, variants=[variant])
        else:
            slot.variants.append(variant)
            slot.cursor = len(slot.variants) - 1
        return slot_id

    def find(self, slot_id: Hashable) -> Slot | None:
        return self._slots.get(slot_id)

    def latest(self) -> Slot | None:
        if not self._slots:
            return None
        return next(reversed(self._slots.values()))

    def latest_with_role(self, role: Role) -> Slot | None:
        """Most recent slot whose currently selected variant has ``role``."""
        for slot in reversed(self._slots.values()):
            if slot.selected.role == role:
                return slot
        return None

    def _require(self, slot_id: Hashable) -> Slot:
        slot = self._slots.get(slot_id)
        if slot is None:
            raise NavigationError(NavigationErrorKind.NOT_FOUND, slot_id)
        return slot

    def select_prev(self, slot_id: Hashable) -> Variant:
        slot = self._require(slot_id)
        if not slot.can_go_back:
            raise NavigationError(NavigationErrorKind.AT_START, slot_id)
        slot.cursor -= 1
        return slot.selected

    def select_next(self, slot_id: Hashable) -> Variant:
        slot = self._require(slot_id)
        if not slot.can_go_forward:
            raise NavigationError(NavigationErrorKind.AT_END, slot_id)
        slot.cursor += 1
        return slot.selected

    def regenerate(self, slot_id: Hashable, variant: Variant) -> Variant:
        """Append a replacement reply to an assistant slot and select it."""
        slot = self._require(slot_id)
        if slot.selected.role != Role.ASSISTANT or variant.role != Role.ASSISTANT:
            raise NavigationError(NavigationErrorKind.NOT_REGENERABLE, slot_id)
        self.append(variant, slot_id)
        return slot.selected

    def drain_oldest(self, n: int) -> list[Variant]:
        """Remove the first ``n`` slots and return their selected variants."""
        keys = list(itertools.islice(self._slots, max(n, 0)))
        drained = [self._slots.pop(key).selected for key in keys]
        if drained:
            logger.debug("Drained %d slot(s) from history", len(drained))
        return drained

    def drain_all(self) -> list[Slot]:
        """Empty the store, returning every slot in conversation order."""
        slots = list(self._slots.values())
        self._slots.clear()
        return slots
