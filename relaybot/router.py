"""Per-message routing: access check, forwarded filter, persistence, command or LLM reply."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import Any

from relaybot.commands import COMMAND_PREFIX, CommandDispatcher, CompletionClient, parse_command
from relaybot.memory.event_log import EventLogStore
from relaybot.memory.message_store import ASSISTANT_USER_ID, MessageKind, MessageStore
from relaybot.transport import InboundMessage, Transport, TransportError

ACCESS_DENIED_TEXT = "🚫 Access denied"
GENERIC_FAILURE_TEXT = "❌ Something went wrong. Please try again."

logger = logging.getLogger(__name__)


class MessageRouter:
    def __init__(
        self,
        *,
        store: MessageStore,
        llm: CompletionClient,
        dispatcher: CommandDispatcher,
        events: EventLogStore | None = None,
        authorized_user_id: int | None = None,
        assistant_name: str = "Claude",
    ) -> None:
        self._store = store
        self._llm = llm
        self._dispatcher = dispatcher
        self._events = events
        self._authorized_user_id = authorized_user_id
        self._assistant_name = assistant_name

    def is_authorized(self, sender_id: int) -> bool:
        if self._authorized_user_id is None:
            return True
        return sender_id == self._authorized_user_id

    async def handle(self, message: InboundMessage, transport: Transport) -> None:
        if not self.is_authorized(message.sender_id):
            logger.info("Denied message from user %s", message.sender_id)
            self._record(
                "message_denied",
                {"chat_id": message.chat_id, "user_id": message.sender_id, "reason": "not_authorized"},
                decision="deny",
            )
            await self._send(transport, message.chat_id, ACCESS_DENIED_TEXT)
            return

        if message.forwarded:
            logger.debug("Ignoring forwarded message in chat %s", message.chat_id)
            self._record("forwarded_ignored", {"chat_id": message.chat_id}, decision="allow")
            return

        text = message.text
        is_command = text.startswith(COMMAND_PREFIX)
        self._persist(message.sender_id, message.display_name, text, MessageKind.TEXT, is_command)

        if is_command:
            command = parse_command(text)
            if command is not None:
                await self._dispatcher.dispatch(command, message, transport)
                return

        if not text.strip():
            return

        try:
            await self._reply_with_llm(message, transport)
        except Exception as exc:
            logger.exception("Error processing message in chat %s", message.chat_id)
            self._record(
                "message_failed",
                {"chat_id": message.chat_id, "error": str(exc)[:500]},
                decision="deny",
            )
            await self._send(transport, message.chat_id, GENERIC_FAILURE_TEXT)

    async def _reply_with_llm(self, message: InboundMessage, transport: Transport) -> None:
        logger.info("User message: %s", message.text[:200])
        await transport.send_typing(message.chat_id)
        reply = await asyncio.to_thread(self._llm.complete, message.text)
        logger.info("Claude response: %s", reply[:200])
        await transport.send_text(message.chat_id, reply)
        self._persist(ASSISTANT_USER_ID, self._assistant_name, reply, MessageKind.RESPONSE, False)

    def _persist(self, user_id: int, display_name: str, text: str, kind: MessageKind, is_command: bool) -> None:
        try:
            self._store.append(user_id, display_name, text, kind, is_command)
        except sqlite3.Error as exc:
            logger.error("Could not store message from user %s: %s", user_id, exc)

    def _record(self, event_type: str, payload: dict[str, Any], *, decision: str) -> None:
        if self._events is None:
            return
        try:
            self._events.record(event_type, payload, decision=decision)
        except sqlite3.Error as exc:
            logger.warning("Could not record %s event: %s", event_type, exc)

    async def _send(self, transport: Transport, chat_id: int, text: str) -> None:
        try:
            await transport.send_text(chat_id, text)
        except TransportError as exc:
            logger.error("Could not send reply to chat %s: %s", chat_id, exc)
