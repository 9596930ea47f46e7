"""Tests for the session registry."""

import asyncio
from unittest.mock import Mock

import pytest

from mneme.chat.models import Variant
from mneme.chat.prompt import SystemPromptBuilder
from mneme.session import ChatSession, SessionRegistry, StaleControl, UserRef

ANA = UserRef(id="1", name="Ana", chat_id=100)
BEN = UserRef(id="2", name="Ben", chat_id=200)


class CountingFactory:
    """Session factory that records every creation."""

    def __init__(self) -> None:
        self.created: list[UserRef] = []

    async def __call__(self, user: UserRef) -> ChatSession:
        self.created.append(user)
        return ChatSession(
            user=user,
            builder=SystemPromptBuilder(chatbot_name="Mneme", user_name=user.name),
            memory=Mock(),
            agent=Mock(),
        )


@pytest.fixture
def factory() -> CountingFactory:
    return CountingFactory()


@pytest.fixture
def registry(factory: CountingFactory) -> SessionRegistry:
    return SessionRegistry(factory)


class TestChatSession:
    def test_stale_controls_only_delivered_replies(self):
        session = ChatSession(
            user=ANA,
            builder=SystemPromptBuilder(chatbot_name="M", user_name="Ana"),
            memory=Mock(),
            agent=Mock(),
        )
        session.branches.append(Variant.user("hi"), 10)
        session.branches.append(Variant.assistant("hello"), 11)
        session.branches.append(Variant.user("nudge"))
        session.branches.append(Variant.assistant("still there?"), 13)

        assert session.stale_controls() == [StaleControl(100, 11), StaleControl(100, 13)]


class TestSessionRegistry:
    @pytest.mark.asyncio
    async def test_get_or_create_is_lazy_and_cached(self, registry, factory):
        assert ANA.id not in registry

        s1 = await registry.get_or_create(ANA)
        s2 = await registry.get_or_create(ANA)

        assert s1 is s2
        assert factory.created == [ANA]
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_sessions_per_user(self, registry):
        a = await registry.get_or_create(ANA)
        b = await registry.get_or_create(BEN)

        assert a is not b
        assert a.builder.user_name == "Ana"
        assert b.builder.user_name == "Ben"

    @pytest.mark.asyncio
    async def test_acquire_holds_lock(self, registry):
        async with registry.acquire(ANA) as session:
            assert registry.is_busy(ANA.id)
            assert session.user == ANA
        assert not registry.is_busy(ANA.id)

    @pytest.mark.asyncio
    async def test_same_user_turns_serialized(self, registry):
        order: list[str] = []

        async def turn(label: str, delay: float) -> None:
            async with registry.acquire(ANA):
                order.append(f"{label}-start")
                await asyncio.sleep(delay)
                order.append(f"{label}-end")

        await asyncio.gather(turn("a", 0.05), turn("b", 0))

        assert order == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_different_users_concurrent(self, registry):
        release = asyncio.Event()

        async def slow() -> None:
            async with registry.acquire(ANA):
                await release.wait()

        task = asyncio.create_task(slow())
        await asyncio.sleep(0)

        async with registry.acquire(BEN):
            assert registry.is_busy(ANA.id)

        release.set()
        await task

    @pytest.mark.asyncio
    async def test_clear_replaces_session(self, registry, factory):
        old = await registry.get_or_create(ANA)
        old.branches.append(Variant.user("hi"), 1)

        new = await registry.clear(ANA)

        assert new is not old
        assert len(new.branches) == 0
        assert await registry.get_or_create(ANA) is new
        assert len(factory.created) == 2

    @pytest.mark.asyncio
    async def test_clear_cancels_nudge(self, registry):
        fired = asyncio.Event()

        async def callback() -> None:
            fired.set()

        registry.schedule_nudge(ANA.id, 0.05, callback)
        assert registry.has_pending_nudge(ANA.id)

        await registry.clear(ANA)
        await asyncio.sleep(0.1)

        assert not fired.is_set()
        assert not registry.has_pending_nudge(ANA.id)


class TestNudges:
    @pytest.mark.asyncio
    async def test_nudge_fires(self, registry):
        fired = asyncio.Event()

        async def callback() -> None:
            fired.set()

        registry.schedule_nudge(ANA.id, 0.01, callback)
        await asyncio.wait_for(fired.wait(), timeout=1)

        await asyncio.sleep(0)
        assert not registry.has_pending_nudge(ANA.id)

    @pytest.mark.asyncio
    async def test_cancel(self, registry):
        fired = asyncio.Event()

        async def callback() -> None:
            fired.set()

        registry.schedule_nudge(ANA.id, 0.05, callback)

        assert registry.cancel_nudge(ANA.id) is True
        assert registry.cancel_nudge(ANA.id) is False
        await asyncio.sleep(0.1)
        assert not fired.is_set()

    @pytest.mark.asyncio
    async def test_reschedule_replaces_timer(self, registry):
        calls: list[str] = []

        async def first() -> None:
            calls.append("first")

        async def second() -> None:
            calls.append("second")

        registry.schedule_nudge(ANA.id, 0.05, first)
        registry.schedule_nudge(ANA.id, 0.01, second)
        await asyncio.sleep(0.1)

        assert calls == ["second"]

    @pytest.mark.asyncio
    async def test_callback_error_logged(self, registry, caplog):
        async def callback() -> None:
            raise RuntimeError("boom")

        registry.schedule_nudge(ANA.id, 0.01, callback)
        await asyncio.sleep(0.05)

        assert "Proactive message for 1 failed" in caplog.text


class TestShutdown:
    @pytest.mark.asyncio
    async def test_returns_stale_controls_and_drains(self, registry):
        session = await registry.get_or_create(ANA)
        session.branches.append(Variant.user("hi"), 10)
        session.branches.append(Variant.assistant("hello"), 11)
        other = await registry.get_or_create(BEN)
        other.branches.append(Variant.assistant("yo"), 21)

        stale = await registry.shutdown()

        assert set(stale) == {StaleControl(100, 11), StaleControl(200, 21)}
        assert len(session.branches) == 0
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_cancels_nudges(self, registry):
        fired = asyncio.Event()

        async def callback() -> None:
            fired.set()

        registry.schedule_nudge(ANA.id, 0.05, callback)
        await registry.shutdown()
        await asyncio.sleep(0.1)

        assert not fired.is_set()

    @pytest.mark.asyncio
    async def test_waits_for_in_flight_turn(self, registry):
        release = asyncio.Event()

        async def turn() -> None:
            async with registry.acquire(ANA) as session:
                await release.wait()
                session.branches.append(Variant.assistant("late reply"), 55)

        task = asyncio.create_task(turn())
        await asyncio.sleep(0)
        shutdown = asyncio.create_task(registry.shutdown())
        await asyncio.sleep(0.01)
        assert not shutdown.done()

        release.set()
        await task
        stale = await shutdown

        assert StaleControl(100, 55) in stale

    @pytest.mark.asyncio
    async def test_no_new_sessions_after_shutdown(self, registry):
        await registry.shutdown()

        with pytest.raises(RuntimeError):
            await registry.get_or_create(ANA)

        registry.schedule_nudge(ANA.id, 0.01, Mock())
        assert not registry.has_pending_nudge(ANA.id)
