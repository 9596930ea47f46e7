"""Per-user session table with exclusive access and nudge timers."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable

from ..chat.branches import BranchStore
from ..chat.models import Role
from ..chat.prompt import SystemPromptBuilder
from ..config import NudgeConfig

if TYPE_CHECKING:
    from ..agent import CompletionAgent
    from ..memory import MemoryPipeline

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserRef:
    """Who a session belongs to and where to reach them."""

    id: str
    name: str
    chat_id: int | None = None


@dataclass(frozen=True)
class StaleControl:
    """A delivered message whose navigation buttons should be removed."""

    chat_id: int | None
    message_id: int


@dataclass
class ChatSession:
    """State for a single user."""

    user: UserRef
    builder: SystemPromptBuilder
    memory: MemoryPipeline
    agent: CompletionAgent
    branches: BranchStore = field(default_factory=BranchStore)
    nudge: NudgeConfig = field(default_factory=NudgeConfig)

    def stale_controls(self) -> list[StaleControl]:
        """Assistant messages that currently carry navigation buttons."""
        return [
            StaleControl(self.user.chat_id, slot.message_id)
            for slot in self.branches
            if slot.message_id is not None and slot.selected.role == Role.ASSISTANT
        ]


SessionFactory = Callable[[UserRef], Awaitable[ChatSession]]
NudgeCallback = Callable[[], Awaitable[None]]


class SessionRegistry:
    """Maps users to sessions.

    Each user has one ``asyncio.Lock``; holding it gives exclusive access
    to that user's session, so one user's turns run strictly in order
    while different users proceed concurrently. The table itself is only
    guarded for the short moments it is read or replaced.
    """

    def __init__(self, factory: SessionFactory) -> None:
        self._factory = factory
        self._sessions: dict[str, ChatSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._nudges: dict[str, asyncio.Task[None]] = {}
        self._table_lock = asyncio.Lock()
        self._closed = False

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._sessions

    def get_lock(self, user_id: str) -> asyncio.Lock:
        if user_id not in self._locks:
            self._locks[user_id] = asyncio.Lock()
        return self._locks[user_id]

    def is_busy(self, user_id: str) -> bool:
        """Whether a turn for this user is currently in progress."""
        return self.get_lock(user_id).locked()

    async def _create(self, user: UserRef) -> ChatSession:
        self.cancel_nudge(user.id)
        session = await self._factory(user)
        async with self._table_lock:
            self._sessions[user.id] = session
        logger.info("Created session for %s", user.id)
        return session

    async def _get_or_create_locked(self, user: UserRef) -> ChatSession:
        if self._closed:
            raise RuntimeError("Session registry is shut down")
        async with self._table_lock:
            session = self._sessions.get(user.id)
        if session is None:
            session = await self._create(user)
        return session

    async def get_or_create(self, user: UserRef) -> ChatSession:
        """Return the user's session, creating it on first use."""
        async with self.get_lock(user.id):
            return await self._get_or_create_locked(user)

    @asynccontextmanager
    async def acquire(self, user: UserRef) -> AsyncIterator[ChatSession]:
        """Exclusive access to the user's session for a whole turn."""
        async with self.get_lock(user.id):
            yield await self._get_or_create_locked(user)

    async def clear(self, user: UserRef) -> ChatSession:
        """Discard the user's session and start a fresh one."""
        self.cancel_nudge(user.id)
        async with self.get_lock(user.id):
            async with self._table_lock:
                self._sessions.pop(user.id, None)
            return await self._create(user)

    def schedule_nudge(self, user_id: str, delay: float, callback: NudgeCallback) -> None:
        """Run ``callback`` after ``delay`` seconds unless cancelled first."""
        if self._closed:
            return
        self.cancel_nudge(user_id)
        self._nudges[user_id] = asyncio.create_task(
            self._run_nudge(user_id, delay, callback), name=f"nudge-{user_id}"
        )

    async def _run_nudge(self, user_id: str, delay: float, callback: NudgeCallback) -> None:
        await asyncio.sleep(delay)
        # past this point the nudge is a regular turn and no longer cancellable
        if self._nudges.get(user_id) is asyncio.current_task():
            del self._nudges[user_id]
        try:
            await callback()
        except Exception:
            logger.exception("Proactive message for %s failed", user_id)

    def cancel_nudge(self, user_id: str) -> bool:
        """Cancel the user's pending nudge timer. Returns True if one was pending."""
        task = self._nudges.pop(user_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug("Cancelled nudge for %s", user_id)
        return True

    def has_pending_nudge(self, user_id: str) -> bool:
        task = self._nudges.get(user_id)
        return task is not None and not task.done()

    async def shutdown(self) -> list[StaleControl]:
        """Drain every session and report messages with stale controls.

        Waits for in-flight turns to finish, since each session's lock is
        taken before its history is drained.
        """
        self._closed = True
        pending = list(self._nudges.values())
        for user_id in list(self._nudges):
            self.cancel_nudge(user_id)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        async with self._table_lock:
            sessions = list(self._sessions.items())

        stale: list[StaleControl] = []
        for user_id, session in sessions:
            async with self.get_lock(user_id):
                stale.extend(session.stale_controls())
                session.branches.drain_all()

        async with self._table_lock:
            self._sessions.clear()

        logger.info(
            "Shut down %d session(s), %d stale control(s)", len(sessions), len(stale)
        )
        return stale
