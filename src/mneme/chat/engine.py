"""Turn orchestration over a user's session.

Every method expects the caller to hold the session's exclusive lock
(``SessionRegistry.acquire``) for its whole duration.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable, Hashable

from ..agent import CompletionAgent, CompletionResult, StopReason
from ..logging import JSONLLogger, get_logger
from ..memory import MemoryPipeline, MemoryRecallTool, MemoryStoreTool, Summarizer
from ..session import ChatSession, UserRef
from ..tools import ToolRegistry
from .branches import NavigationError, NavigationErrorKind
from .context import AssembledContext, ContextAssembler
from .models import Role, Variant

if TYPE_CHECKING:
    from groq import AsyncGroq

    from ..config import ConfigStore
    from ..memory import Embedder, VectorMemoryStore

logger = logging.getLogger(__name__)

# Sends reply text to the user and returns the delivered message id.
Deliver = Callable[[str], Awaitable[int]]


class EmptyReplyError(Exception):
    """Raised when the model produced no text to deliver."""


@dataclass
class TurnResult:
    """Outcome of a turn that produced an assistant reply."""

    slot_id: Hashable
    reply: Variant
    stop_reason: StopReason
    recalled: int = 0
    evicted: int = 0
    memory_error: str | None = None


class ChatEngine:
    """Runs user turns, regenerations, navigation and proactive nudges."""

    def __init__(
        self,
        assembler: ContextAssembler | None = None,
        event_log: JSONLLogger | None = None,
    ) -> None:
        self.assembler = assembler or ContextAssembler()
        self.event_log = event_log or get_logger()

    async def _recall(self, session: ChatSession, text: str) -> int:
        """Fold facts relevant to ``text`` into the session's prompt builder."""
        limit = session.agent.config.recall_limit
        try:
            facts = await session.memory.recall(text, limit)
        except Exception as e:
            logger.warning("Recall failed for %s, continuing without: %s", session.user.id, e)
            self.event_log.log_memory(session.user.id, "recall", error=str(e))
            return 0

        known = set(session.builder.long_term_memory)
        fresh = [fact for fact in facts if fact not in known]
        session.builder = session.builder.add_long_term_memories(fresh)
        if fresh:
            self.event_log.log_memory(session.user.id, "recall", count=len(fresh))
        return len(fresh)

    async def _complete(
        self, session: ChatSession, messages: list[Variant], evicted: int
    ) -> CompletionResult:
        started = time.monotonic()
        result = await session.agent.complete(messages)
        self.event_log.log_completion(
            session.user.id,
            result.stop_reason.value,
            turns=result.turns,
            duration_ms=(time.monotonic() - started) * 1000,
            evicted=evicted,
        )
        if not result.response:
            raise EmptyReplyError(f"No reply from the model ({result.stop_reason.value})")
        return result

    async def _remember(self, session: ChatSession, evicted: list[Variant] | None) -> str | None:
        """Summarize evicted turns into long-term memory.

        A storage failure is reported back, never undoing the turn.
        """
        if not evicted:
            return None
        try:
            fact = await session.memory.remember_evicted(evicted)
        except Exception as e:
            logger.exception("Storing memory for %s failed", session.user.id)
            self.event_log.log_memory(session.user.id, "store", error=str(e))
            return str(e)
        if fact is not None:
            self.event_log.log_memory(session.user.id, "store", count=1)
        return None

    @asynccontextmanager
    async def _keeping_evicted(
        self, session: ChatSession, context: AssembledContext
    ) -> AsyncIterator[None]:
        """Summarize the evicted turns if the rest of the turn fails.

        Eviction has already drained them from the store by then.
        """
        try:
            yield
        except Exception:
            await self._remember(session, context.evicted)
            raise

    async def respond(
        self,
        session: ChatSession,
        text: str,
        message_id: int | None,
        deliver: Deliver,
    ) -> TurnResult:
        """Answer a user message.

        Args:
            session: The user's session (lock held by caller).
            text: Message text.
            message_id: Transport id of the user's message.
            deliver: Sends the reply and returns its message id.
        """
        session.branches.append(Variant.user(text), message_id)
        self.event_log.log_message(session.user.id, message_id, Role.USER.value, len(text))

        recalled = await self._recall(session, text)
        context = self.assembler.assemble(
            session.branches, session.builder, session.agent.recalling
        )
        evicted = len(context.evicted or [])
        async with self._keeping_evicted(session, context):
            result = await self._complete(session, context.messages, evicted)
            reply = Variant.assistant(result.response)
            reply_id = await deliver(reply.content)
        slot_id = session.branches.append(reply, reply_id)
        self.event_log.log_message(
            session.user.id, reply_id, Role.ASSISTANT.value, len(reply.content)
        )

        return TurnResult(
            slot_id=slot_id,
            reply=reply,
            stop_reason=result.stop_reason,
            recalled=recalled,
            evicted=evicted,
            memory_error=await self._remember(session, context.evicted),
        )

    async def regenerate(self, session: ChatSession, slot_id: Hashable) -> TurnResult:
        """Produce an alternative for the latest assistant reply.

        The previous reply stays in the slot and can be paged back to.
        """
        slot = session.branches.find(slot_id)
        if slot is None:
            raise NavigationError(NavigationErrorKind.NOT_FOUND, slot_id)
        if session.branches.latest_with_role(Role.ASSISTANT) is not slot:
            raise NavigationError(NavigationErrorKind.NOT_REGENERABLE, slot_id)

        context = self.assembler.assemble_for_regenerate(
            session.branches, session.builder, session.agent.recalling
        )
        evicted = len(context.evicted or [])
        async with self._keeping_evicted(session, context):
            if slot_id not in session.branches:
                # evicted by this assembly, no variant can be attached anymore
                raise NavigationError(NavigationErrorKind.NOT_FOUND, slot_id)
            result = await self._complete(session, context.messages, evicted)

        reply = session.branches.regenerate(
            slot_id, Variant.assistant(result.response, regenerated=True)
        )
        self.event_log.log_navigation(
            session.user.id, slot_id, "regenerate", cursor=slot.cursor
        )

        return TurnResult(
            slot_id=slot_id,
            reply=reply,
            stop_reason=result.stop_reason,
            evicted=evicted,
            memory_error=await self._remember(session, context.evicted),
        )

    def select_prev(self, session: ChatSession, slot_id: Hashable) -> Variant:
        try:
            variant = session.branches.select_prev(slot_id)
        except NavigationError as e:
            self.event_log.log_navigation(session.user.id, slot_id, "prev", error=e.kind.value)
            raise
        self.event_log.log_navigation(
            session.user.id, slot_id, "prev", cursor=session.branches.find(slot_id).cursor
        )
        return variant

    def select_next(self, session: ChatSession, slot_id: Hashable) -> Variant:
        try:
            variant = session.branches.select_next(slot_id)
        except NavigationError as e:
            self.event_log.log_navigation(session.user.id, slot_id, "next", error=e.kind.value)
            raise
        self.event_log.log_navigation(
            session.user.id, slot_id, "next", cursor=session.branches.find(slot_id).cursor
        )
        return variant

    async def nudge(self, session: ChatSession, deliver: Deliver) -> TurnResult:
        """Send a proactive message after the user went quiet.

        Raises:
            EmptyContextError: If there is no conversation to follow up on.
        """
        context = self.assembler.assemble_for_nudge(
            session.branches, session.builder, session.agent.recalling
        )
        evicted = len(context.evicted or [])
        async with self._keeping_evicted(session, context):
            result = await self._complete(session, context.messages, evicted)
            reply = Variant.assistant(result.response, nudge=True)
            reply_id = await deliver(reply.content)
        slot_id = session.branches.append(reply, reply_id)
        self.event_log.log("nudge", user_id=session.user.id, slot_id=reply_id)

        return TurnResult(
            slot_id=slot_id,
            reply=reply,
            stop_reason=result.stop_reason,
            evicted=evicted,
            memory_error=await self._remember(session, context.evicted),
        )


class SessionFactory:
    """Builds a fresh session from the latest configuration snapshot."""

    def __init__(
        self,
        config_store: ConfigStore,
        groq_client: AsyncGroq,
        embedder: Embedder,
        vector_store: VectorMemoryStore,
    ) -> None:
        self.config_store = config_store
        self.groq_client = groq_client
        self.embedder = embedder
        self.vector_store = vector_store

    async def __call__(self, user: UserRef) -> ChatSession:
        config = self.config_store.load()
        builder = config.prompt_builder(user.name)

        memory = MemoryPipeline(
            self.embedder,
            self.vector_store,
            Summarizer(self.groq_client, model=config.llm.model),
            user_id=user.id,
            user_name=builder.user_name,
            assistant_name=builder.chatbot_name,
        )

        registry = ToolRegistry()
        if config.llm.use_tools:
            registry.register(MemoryRecallTool(memory, config.llm.recall_limit))
            registry.register(MemoryStoreTool(memory))
        agent = CompletionAgent(registry, config.llm, self.groq_client, user_id=user.id)

        stored = await self.vector_store.health_check(user.id)
        seed = await memory.recent(builder.max_ltm) if stored else []
        builder = builder.add_long_term_memories(seed)
        logger.info(
            "Session for %s ready, %d stored fact(s), %d seeded", user.id, stored, len(seed)
        )

        return ChatSession(
            user=user,
            builder=builder,
            memory=memory,
            agent=agent,
            nudge=config.nudge,
        )
