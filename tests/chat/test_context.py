"""Tests for context assembly and eviction."""

from datetime import datetime, timedelta, timezone

import pytest

from mneme.chat.branches import BranchStore
from mneme.chat.context import ContextAssembler, EmptyContextError, eviction_count
from mneme.chat.models import Role, Variant
from mneme.chat.prompt import SystemPromptBuilder

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def assembler() -> ContextAssembler:
    return ContextAssembler(clock=lambda: NOW)


@pytest.fixture
def builder() -> SystemPromptBuilder:
    return SystemPromptBuilder(chatbot_name="Mneme", user_name="Ana", max_stm=50)


def fill(store: BranchStore, count: int) -> None:
    for i in range(count):
        variant = Variant(
            role=Role.USER if i % 2 == 0 else Role.ASSISTANT,
            content=f"m{i}",
            sent_at=NOW - timedelta(minutes=count - i),
        )
        store.append(variant, i + 1)


class TestEvictionCount:
    @pytest.mark.parametrize(
        "size,max_stm,expected",
        [(0, 50, 0), (49, 50, 0), (50, 50, 10), (60, 50, 20), (1, 1, 1), (5, 5, 1)],
    )
    def test_count(self, size, max_stm, expected):
        assert eviction_count(size, max_stm) == expected


class TestAssemble:
    def test_empty_store_only_system(self, assembler, builder):
        context = assembler.assemble(BranchStore(), builder, recalling=False)

        assert len(context.messages) == 1
        assert context.messages[0].role == Role.SYSTEM
        assert context.evicted is None

    def test_system_first_then_history(self, assembler, builder):
        store = BranchStore()
        fill(store, 4)

        context = assembler.assemble(store, builder, recalling=False)

        assert context.messages[0].role == Role.SYSTEM
        assert [v.content for v in context.messages[1:]] == ["m0", "m1", "m2", "m3"]
        assert context.to_messages()[1] == {"role": "user", "content": "m0"}

    def test_uses_selected_variant(self, assembler, builder):
        store = BranchStore()
        store.append(Variant.user("hi"), 1)
        store.append(Variant.assistant("A"), 2)
        store.regenerate(2, Variant.assistant("B"))
        store.select_prev(2)

        context = assembler.assemble(store, builder, recalling=False)

        assert context.messages[-1].content == "A"

    def test_below_capacity_no_eviction(self, assembler, builder):
        store = BranchStore()
        fill(store, 49)

        context = assembler.assemble(store, builder, recalling=False)

        assert context.evicted is None
        assert len(store) == 49

    def test_full_window_evicts_oldest(self, assembler, builder):
        store = BranchStore()
        fill(store, 60)

        context = assembler.assemble(store, builder, recalling=False)

        assert [v.content for v in context.evicted] == [f"m{i}" for i in range(20)]
        assert len(store) == 40
        assert [slot.key for slot in store][0] == 21
        # the current call still sees the whole window
        assert len(context.messages) == 61

    def test_recall_note_toggles(self, assembler, builder):
        store = BranchStore()
        fill(store, 2)

        with_recall = assembler.assemble(store, builder, recalling=True)
        without = assembler.assemble(store, builder, recalling=False)

        assert "memory_recall" in with_recall.system_prompt
        assert "memory_recall" not in without.system_prompt

    def test_time_since_uses_last_message(self, assembler):
        builder = SystemPromptBuilder(
            chatbot_name="Mneme", user_name="Ana", about="Last seen {time_since} ago"
        )
        store = BranchStore()
        store.append(Variant(Role.USER, "hi", sent_at=NOW - timedelta(minutes=90)), 1)

        context = assembler.assemble(store, builder, recalling=False)

        assert "Last seen 90 minutes ago" in context.system_prompt


class TestAssembleForRegenerate:
    def test_hides_last_assistant_reply(self, assembler, builder):
        store = BranchStore()
        fill(store, 4)

        context = assembler.assemble_for_regenerate(store, builder, recalling=False)

        assert [v.content for v in context.messages[1:]] == ["m0", "m1", "m2"]
        assert len(store) == 4

    def test_skips_trailing_user_messages(self, assembler, builder):
        store = BranchStore()
        fill(store, 3)

        context = assembler.assemble_for_regenerate(store, builder, recalling=False)

        assert [v.content for v in context.messages[1:]] == ["m0", "m2"]

    def test_never_removes_system_prompt(self, assembler, builder):
        context = assembler.assemble_for_regenerate(BranchStore(), builder, recalling=False)

        assert len(context.messages) == 1
        assert context.messages[0].role == Role.SYSTEM


class TestAssembleForNudge:
    def test_empty_store_raises(self, assembler, builder):
        store = BranchStore()

        with pytest.raises(EmptyContextError):
            assembler.assemble_for_nudge(store, builder, recalling=False)

        assert len(store) == 0

    def test_appends_ephemeral_prompt(self, assembler, builder):
        store = BranchStore()
        store.append(Variant(Role.USER, "hi", sent_at=NOW - timedelta(hours=3)), 1)
        store.append(Variant(Role.ASSISTANT, "hello", sent_at=NOW - timedelta(hours=3)), 2)

        context = assembler.assemble_for_nudge(store, builder, recalling=False)

        nudge = context.messages[-1]
        assert nudge.role == Role.USER
        assert nudge.metadata == {"nudge": True}
        assert "3 hours" in nudge.content
        assert len(store) == 3
        assert store.latest().is_ephemeral
        assert store.latest().selected is nudge

    def test_time_since_last(self, assembler):
        store = BranchStore()
        store.append(Variant(Role.USER, "hi", sent_at=NOW - timedelta(seconds=30)), 1)

        assert assembler.time_since_last(store) == timedelta(seconds=30)
