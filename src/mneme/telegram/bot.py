"""Telegram bot integration for Mneme."""

from __future__ import annotations

import logging
import os
from functools import partial

from groq import AsyncGroq
from qdrant_client import AsyncQdrantClient
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ParseMode
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from ..chat.branches import NavigationError
from ..chat.context import EmptyContextError
from ..chat.engine import ChatEngine, SessionFactory
from ..chat.models import Role, Slot
from ..config import ConfigStore, MemoryConfig
from ..logging import get_logger
from ..memory import Embedder, SentenceTransformerEmbedder, VectorMemoryStore
from ..session import ChatSession, SessionRegistry, StaleControl, UserRef

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = """
*{bot}*

Just write to me and I'll answer. I remember what we talked about,
even after our older messages fall out of view.

*Commands:*
/start - Show this message
/clear - Start a fresh conversation

Use ◀ and ▶ under my replies to browse alternatives, 🔄 to ask for a new one.
"""

MAX_MESSAGE_LENGTH = 4096

PREV = "prev"
NEXT = "next"
REGEN = "regen"


def truncate_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Truncate message to fit Telegram limits."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 20] + "\n... [truncated]"


def build_keyboard(
    can_go_back: bool, can_go_forward: bool, regenerable: bool
) -> InlineKeyboardMarkup | None:
    """Navigation buttons for a reply, leaving out the impossible ones."""
    buttons = []
    if can_go_back:
        buttons.append(InlineKeyboardButton("◀", callback_data=PREV))
    if regenerable:
        buttons.append(InlineKeyboardButton("🔄", callback_data=REGEN))
    if can_go_forward:
        buttons.append(InlineKeyboardButton("▶", callback_data=NEXT))
    if not buttons:
        return None
    return InlineKeyboardMarkup([buttons])


def keyboard_for(session: ChatSession, slot: Slot) -> InlineKeyboardMarkup | None:
    """Buttons matching a slot's current place in the session."""
    if slot.key not in session.branches:
        return None
    regenerable = session.branches.latest_with_role(Role.ASSISTANT) is slot
    return build_keyboard(slot.can_go_back, slot.can_go_forward, regenerable)


def build_vector_store(config: MemoryConfig, embedder: Embedder) -> VectorMemoryStore:
    """Create the Qdrant-backed store described by the memory config."""
    if config.qdrant_url == ":memory:":
        client = AsyncQdrantClient(location=":memory:")
    else:
        client = AsyncQdrantClient(url=config.qdrant_url, api_key=config.qdrant_api_key)
    return VectorMemoryStore(client, embedder.dimension, config.collection)


class TelegramBot:
    """Telegram bot for Mneme."""

    def __init__(
        self,
        token: str | None = None,
        config_store: ConfigStore | None = None,
        groq_client: AsyncGroq | None = None,
        embedder: Embedder | None = None,
        vector_store: VectorMemoryStore | None = None,
        engine: ChatEngine | None = None,
    ) -> None:
        self.token = token or os.getenv("TELEGRAM_TOKEN")
        if not self.token:
            raise ValueError("TELEGRAM_TOKEN not set")

        self.config_store = config_store or ConfigStore()
        config = self.config_store.load()

        groq_client = groq_client or AsyncGroq(api_key=os.getenv("GROQ_API_KEY"))
        embedder = embedder or SentenceTransformerEmbedder(config.memory.embedding_model)
        self.vector_store = vector_store or build_vector_store(config.memory, embedder)

        self.registry = SessionRegistry(
            SessionFactory(self.config_store, groq_client, embedder, self.vector_store)
        )
        self.engine = engine or ChatEngine()
        self.json_logger = get_logger()
        self._app: Application | None = None

    def _user_ref(self, update: Update) -> UserRef:
        assert update.effective_user is not None
        assert update.effective_chat is not None
        user = update.effective_user
        return UserRef(
            id=str(user.id),
            name=user.first_name or user.username or "User",
            chat_id=update.effective_chat.id,
        )

    async def _set_controls(
        self, chat_id: int | None, message_id: int, markup: InlineKeyboardMarkup | None
    ) -> None:
        assert self._app is not None
        try:
            await self._app.bot.edit_message_reply_markup(
                chat_id=chat_id, message_id=message_id, reply_markup=markup
            )
        except TelegramError as e:
            logger.warning("Could not update buttons on %s/%s: %s", chat_id, message_id, e)

    async def _refresh_previous(self, session: ChatSession, previous: Slot | None) -> None:
        """Drop the regenerate button from the reply that is no longer latest."""
        if previous is None or previous.message_id is None:
            return
        await self._set_controls(
            session.user.chat_id, previous.message_id, keyboard_for(session, previous)
        )

    def _schedule_nudge(self, session: ChatSession) -> None:
        if not session.nudge.enabled:
            return
        self.registry.schedule_nudge(
            session.user.id, session.nudge.delay, partial(self._nudge, session.user)
        )

    async def _handle_start(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /start command."""
        assert update.message is not None
        user = self._user_ref(update)

        self.json_logger.log("telegram_start", user_id=user.id)

        name = self.config_store.load().prompt_builder(user.name).chatbot_name
        await update.message.reply_text(
            WELCOME_MESSAGE.format(bot=name),
            parse_mode=ParseMode.MARKDOWN,
        )

    async def _handle_clear(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /clear command."""
        assert update.message is not None
        user = self._user_ref(update)

        stale: list[StaleControl] = []
        if user.id in self.registry:
            async with self.registry.acquire(user) as session:
                stale = session.stale_controls()

        try:
            await self.registry.clear(user)
        except Exception as e:
            logger.exception("Error clearing session")
            self.json_logger.log("telegram_error", user_id=user.id, error=str(e))
            await update.message.reply_text(f"❌ Error: {e}")
            return

        for control in stale:
            await self._set_controls(control.chat_id, control.message_id, None)

        self.json_logger.log("telegram_clear", user_id=user.id)
        await update.message.reply_text("✨ Conversation cleared.")

    async def _handle_message(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle incoming messages."""
        assert update.message is not None
        assert update.message.text is not None

        message = update.message
        user = self._user_ref(update)
        self.registry.cancel_nudge(user.id)

        async def deliver(text: str) -> int:
            sent = await message.reply_text(
                truncate_message(text),
                reply_markup=build_keyboard(False, False, regenerable=True),
            )
            return sent.message_id

        try:
            async with self.registry.acquire(user) as session:
                await message.chat.send_action("typing")
                previous = session.branches.latest_with_role(Role.ASSISTANT)

                result = await self.engine.respond(
                    session, message.text, message.message_id, deliver
                )

                await self._refresh_previous(session, previous)
                if result.memory_error:
                    logger.warning(
                        "Reply sent to %s but memory was not saved: %s",
                        user.id,
                        result.memory_error,
                    )
                self._schedule_nudge(session)

        except Exception as e:
            logger.exception("Error processing message")
            self.json_logger.log("telegram_error", user_id=user.id, error=str(e))
            await message.reply_text(f"❌ Error: {e}")

    async def _handle_callback(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle the navigation buttons under a reply."""
        query = update.callback_query
        assert query is not None
        if query.message is None:
            await query.answer()
            return

        user = self._user_ref(update)
        slot_id = query.message.message_id
        action = query.data

        try:
            async with self.registry.acquire(user) as session:
                if action == PREV:
                    variant = self.engine.select_prev(session, slot_id)
                elif action == NEXT:
                    variant = self.engine.select_next(session, slot_id)
                elif action == REGEN:
                    self.registry.cancel_nudge(user.id)
                    await query.message.chat.send_action("typing")
                    variant = (await self.engine.regenerate(session, slot_id)).reply
                    self._schedule_nudge(session)
                else:
                    await query.answer("Unknown action")
                    return

                slot = session.branches.find(slot_id)
                assert slot is not None
                await query.edit_message_text(
                    truncate_message(variant.content),
                    reply_markup=keyboard_for(session, slot),
                )
            await query.answer()

        except NavigationError as e:
            await query.answer(e.user_message)

        except Exception as e:
            logger.exception("Error handling %s button", action)
            self.json_logger.log("telegram_error", user_id=user.id, error=str(e))
            await query.answer(f"❌ Error: {e}", show_alert=True)

    async def _nudge(self, user: UserRef) -> None:
        """Follow up on a conversation the user left idle."""
        assert self._app is not None
        bot = self._app.bot

        async def deliver(text: str) -> int:
            sent = await bot.send_message(
                chat_id=user.chat_id,
                text=truncate_message(text),
                reply_markup=build_keyboard(False, False, regenerable=True),
            )
            return sent.message_id

        async with self.registry.acquire(user) as session:
            previous = session.branches.latest_with_role(Role.ASSISTANT)
            try:
                await self.engine.nudge(session, deliver)
            except EmptyContextError:
                logger.info("Nothing to follow up on for %s", user.id)
                return
            await self._refresh_previous(session, previous)

    async def _post_shutdown(self, application: Application) -> None:
        """Called after Application.shutdown()."""
        stale = await self.registry.shutdown()
        for control in stale:
            try:
                await application.bot.edit_message_reply_markup(
                    chat_id=control.chat_id,
                    message_id=control.message_id,
                    reply_markup=None,
                )
            except Exception as e:
                logger.warning(
                    "Could not clear buttons on %s/%s: %s",
                    control.chat_id,
                    control.message_id,
                    e,
                )

        self.json_logger.log("shutdown", stale_controls=len(stale))
        try:
            await self.vector_store.close()
        except Exception as e:
            logger.warning("Error closing vector store: %s", e)

    def build_app(self) -> Application:
        """Build the Telegram application."""
        self._app = (
            Application.builder()
            .token(self.token)
            .concurrent_updates(True)
            .post_shutdown(self._post_shutdown)
            .build()
        )

        self._app.add_handler(CommandHandler("start", self._handle_start))
        self._app.add_handler(CommandHandler("clear", self._handle_clear))
        self._app.add_handler(CallbackQueryHandler(self._handle_callback))
        self._app.add_handler(
            MessageHandler(filters.TEXT & ~filters.COMMAND, self._handle_message)
        )

        return self._app

    def run(self) -> None:
        """Run the bot (blocking)."""
        app = self.build_app()

        logger.info("Starting Telegram bot...")
        app.run_polling(allowed_updates=Update.ALL_TYPES)

