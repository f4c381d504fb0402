"""Telegram transport using python-telegram-bot long polling."""

from __future__ import annotations

import io
import logging
import sqlite3
import time
from typing import Any

from telegram import Bot, BotCommand, InputFile, Message, Update
from telegram.constants import ChatAction, ParseMode
from telegram.error import BadRequest, TelegramError
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from relaybot.commands import COMMAND_DESCRIPTIONS, Command
from relaybot.memory.event_log import EventLogStore
from relaybot.router import MessageRouter
from relaybot.transport import InboundMessage, Transport, TransportError

MAX_TELEGRAM_MESSAGE_LEN = 3900

logger = logging.getLogger(__name__)


def _truncate(text: str) -> str:
    if len(text) <= MAX_TELEGRAM_MESSAGE_LEN:
        return text
    return text[: MAX_TELEGRAM_MESSAGE_LEN - 3] + "..."


def inbound_from_message(message: Message) -> InboundMessage | None:
    """Convert a Telegram message; None for messages without a human sender (channel posts)."""
    user = message.from_user
    if user is None:
        return None
    return InboundMessage(
        chat_id=message.chat_id,
        sender_id=user.id,
        display_name=user.username or user.first_name or "Unknown",
        text=message.text or message.caption or "",
        forwarded=message.forward_origin is not None,
    )


class TelegramTransport(Transport):
    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_text(self, chat_id: int, text: str, *, markdown: bool = False) -> None:
        text = _truncate(text)
        try:
            if markdown:
                try:
                    await self._bot.send_message(chat_id, text, parse_mode=ParseMode.MARKDOWN)
                    return
                except BadRequest as exc:
                    # LLM output is not always valid Markdown.
                    logger.warning("Markdown rejected for chat %s (%s); resending as plain text", chat_id, exc)
            await self._bot.send_message(chat_id, text)
        except TelegramError as exc:
            raise TransportError(f"send_message failed: {exc}") from exc

    async def send_document(self, chat_id: int, content: bytes, *, filename: str, caption: str) -> None:
        try:
            await self._bot.send_document(
                chat_id,
                document=InputFile(io.BytesIO(content), filename=filename),
                caption=caption,
            )
        except TelegramError as exc:
            raise TransportError(f"send_document failed: {exc}") from exc

    async def send_typing(self, chat_id: int) -> None:
        try:
            await self._bot.send_chat_action(chat_id, ChatAction.TYPING)
        except TelegramError as exc:
            raise TransportError(f"send_chat_action failed: {exc}") from exc


class TelegramBot:
    def __init__(
        self,
        token: str,
        router: MessageRouter,
        *,
        commands: list[Command] | None = None,
        events: EventLogStore | None = None,
    ) -> None:
        self._token = token
        self._router = router
        self._commands = commands if commands is not None else list(Command)
        self._events = events
        self._started_at = 0.0
        self._app: Application | None = None

    def _record(self, event_type: str, payload: dict[str, Any], decision: str = "allow") -> None:
        if self._events is None:
            return
        try:
            self._events.record(event_type, payload, decision=decision)
        except sqlite3.Error as exc:
            logger.warning("Could not record %s event: %s", event_type, exc)

    def build(self) -> Application:
        self._app = (
            Application.builder()
            .token(self._token)
            .post_init(self._post_init)
            .build()
        )
        self._app.add_handler(MessageHandler(filters.UpdateType.MESSAGE, self._on_message))
        self._app.add_error_handler(self._on_error)
        return self._app

    def run(self) -> None:
        """Poll until SIGINT/SIGTERM; python-telegram-bot installs the signal handlers."""
        app = self._app or self.build()
        self._started_at = time.time()
        self._record("telegram_bot_started", {"commands": [c.value for c in self._commands]})
        try:
            app.run_polling(allowed_updates=Update.ALL_TYPES)
        finally:
            self._record(
                "telegram_bot_stopped",
                {"uptime": int(time.time() - self._started_at)},
            )
            self._app = None

    async def _post_init(self, app: Application) -> None:
        await app.bot.set_my_commands(
            [BotCommand(c.value.lstrip("/"), COMMAND_DESCRIPTIONS[c]) for c in self._commands]
        )
        logger.info("Bot connected as @%s; send /start to begin", app.bot.username)

    async def _on_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.effective_message is None:
            return
        inbound = inbound_from_message(update.effective_message)
        if inbound is None:
            return
        await self._router.handle(inbound, TelegramTransport(context.bot))

    async def _on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        logger.error("Telegram update failed", exc_info=context.error)
        self._record("transport_error", {"error": str(context.error)[:500]}, decision="deny")
