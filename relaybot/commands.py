"""Slash-command handlers over the message log."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol
from zoneinfo import ZoneInfo

from relaybot.memory.event_log import EventLogStore
from relaybot.memory.message_store import MessageStore, StoredMessage
from relaybot.settings import Settings
from relaybot.transport import InboundMessage, Transport, TransportError

COMMAND_PREFIX = "/"
MAX_WINDOW_MINUTES = 7 * 24 * 60

logger = logging.getLogger(__name__)


class Command(str, Enum):
    START = "/start"
    HISTORY = "/history"
    ANALYZE = "/analyze"
    SUMMARY = "/summary"
    CLEAR = "/clear"
    STATS = "/stats"


COMMAND_DESCRIPTIONS: dict[Command, str] = {
    Command.START: "Show help",
    Command.HISTORY: "Message history (default 30 min)",
    Command.ANALYZE: "Analyze the last hour of messages",
    Command.SUMMARY: "Summary of recent messages",
    Command.CLEAR: "Clear stored history",
    Command.STATS: "Bot statistics",
}

FAILURE_MESSAGES: dict[Command, str] = {
    Command.START: "❌ Failed to show help",
    Command.HISTORY: "❌ Failed to load history",
    Command.ANALYZE: "❌ Analysis failed",
    Command.SUMMARY: "❌ Failed to create summary",
    Command.CLEAR: "❌ Failed to clear history",
    Command.STATS: "❌ Failed to load statistics",
}

HELP_TEXT = """🤖 *Claude Bot is active!*

Available commands:
• `/history [minutes]` - message history (default 30 min)
• `/analyze` - analysis of recent messages
• `/summary [minutes]` - short summary of the conversation
• `/clear` - clear history
• `/stats` - bot statistics

Or just write something and I will answer through Claude! 💬"""


class CompletionClient(Protocol):
    def complete(self, prompt: str, history: list[dict[str, str]] | None = None) -> str: ...


def parse_command(text: str) -> Command | None:
    """Match the first token exactly; ``/cmd@botname`` matches ``/cmd``."""
    parts = text.split()
    if not parts or not parts[0].startswith(COMMAND_PREFIX):
        return None
    token = parts[0].split("@", 1)[0]
    try:
        return Command(token)
    except ValueError:
        return None


def parse_minutes(text: str, default: int) -> int:
    parts = text.split()
    if len(parts) > 1 and parts[1].isdigit() and int(parts[1]) > 0:
        return min(MAX_WINDOW_MINUTES, int(parts[1]))
    return default


def render_history(rows: list[StoredMessage], tz: ZoneInfo) -> str:
    return "\n".join(
        f"[{row.created_at.astimezone(tz).strftime('%H:%M:%S')}] {row.display_name or 'Unknown'}: {row.text}"
        for row in rows
    )


def render_transcript(rows: list[StoredMessage]) -> str:
    return "\n".join(f"{row.display_name}: {row.text}" for row in rows)


class CommandDispatcher:
    def __init__(
        self,
        *,
        store: MessageStore,
        llm: CompletionClient,
        settings: Settings,
        events: EventLogStore | None = None,
        started_at: datetime | None = None,
    ) -> None:
        self._store = store
        self._llm = llm
        self._settings = settings
        self._events = events
        self._tz = ZoneInfo(settings.timezone)
        self._started_at = started_at or datetime.now(timezone.utc)
        self._handlers: dict[Command, Callable[[InboundMessage, Transport], Awaitable[None]]] = {
            Command.START: self._cmd_start,
            Command.HISTORY: self._cmd_history,
            Command.ANALYZE: self._cmd_analyze,
            Command.SUMMARY: self._cmd_summary,
            Command.CLEAR: self._cmd_clear,
            Command.STATS: self._cmd_stats,
        }

    @property
    def commands(self) -> list[Command]:
        return list(self._handlers)

    async def dispatch(self, command: Command, message: InboundMessage, transport: Transport) -> None:
        handler = self._handlers[command]
        try:
            await handler(message, transport)
        except (sqlite3.Error, TransportError) as exc:
            logger.error("Command %s failed: %s", command.value, exc)
            await self._report_failure(command, message, transport, exc)
            return
        except Exception as exc:
            logger.exception("Unexpected error in command %s", command.value)
            await self._report_failure(command, message, transport, exc)
            return
        self._record("command_handled", {"command": command.value, "chat_id": message.chat_id}, decision="allow")

    async def _report_failure(
        self,
        command: Command,
        message: InboundMessage,
        transport: Transport,
        exc: Exception,
    ) -> None:
        self._record("command_failed", {"command": command.value, "error": str(exc)[:500]}, decision="deny")
        try:
            await transport.send_text(message.chat_id, FAILURE_MESSAGES[command])
        except TransportError as send_exc:
            logger.error("Could not report %s failure to chat %s: %s", command.value, message.chat_id, send_exc)

    def _record(self, event_type: str, payload: dict[str, Any], *, decision: str) -> None:
        if self._events is None:
            return
        try:
            self._events.record(event_type, payload, decision=decision)
        except sqlite3.Error as exc:
            logger.warning("Could not record %s event: %s", event_type, exc)

    async def _ask(self, prompt: str) -> str:
        return await asyncio.to_thread(self._llm.complete, prompt)

    async def _cmd_start(self, message: InboundMessage, transport: Transport) -> None:
        await transport.send_text(message.chat_id, HELP_TEXT, markdown=True)

    async def _cmd_history(self, message: InboundMessage, transport: Transport) -> None:
        minutes = parse_minutes(message.text, self._settings.history_default_minutes)
        rows = self._store.query_recent(minutes, self._settings.history_limit)
        if not rows:
            await transport.send_text(message.chat_id, f"📭 No messages in the last {minutes} minutes")
            return

        formatted = render_history(rows, self._tz)
        # Telegram caps message size; long transcripts go out as a file.
        if len(formatted) > self._settings.history_inline_max_chars:
            await transport.send_document(
                message.chat_id,
                formatted.encode("utf-8"),
                filename=f"history_{minutes}min.txt",
                caption=f"📄 History for {minutes} minutes ({len(rows)} messages)",
            )
            return
        await transport.send_text(
            message.chat_id,
            f"📋 *History for the last {minutes} minutes:*\n\n```\n{formatted}\n```",
            markdown=True,
        )

    async def _cmd_analyze(self, message: InboundMessage, transport: Transport) -> None:
        rows = self._store.query_recent(self._settings.analyze_minutes, self._settings.history_limit)
        if not rows:
            await transport.send_text(message.chat_id, "📭 No data to analyze")
            return

        prompt = (
            "Analyze this conversation and give short insights:\n\n"
            f"{render_transcript(rows)}\n\n"
            "What stands out in the dialogue? Which topics, mood, patterns?"
        )
        await transport.send_text(message.chat_id, "🔍 Analyzing the conversation...")
        analysis = await self._ask(prompt)
        await transport.send_text(message.chat_id, f"📊 *Conversation analysis:*\n\n{analysis}", markdown=True)

    async def _cmd_summary(self, message: InboundMessage, transport: Transport) -> None:
        minutes = parse_minutes(message.text, self._settings.summary_default_minutes)
        rows = self._store.query_recent(minutes, self._settings.history_limit)
        if not rows:
            await transport.send_text(message.chat_id, f"📭 No messages in the last {minutes} minutes")
            return

        prompt = (
            f"Write a short summary of this conversation from the last {minutes} minutes. "
            "Highlight the key points, decisions and action items:\n\n"
            f"{render_transcript(rows)}"
        )
        await transport.send_text(message.chat_id, "📝 Creating a summary...")
        summary = await self._ask(prompt)
        await transport.send_text(message.chat_id, f"📝 *Summary for {minutes} minutes:*\n\n{summary}", markdown=True)

    async def _cmd_clear(self, message: InboundMessage, transport: Transport) -> None:
        deleted = self._store.clear_all()
        logger.info("History cleared by %s (%d rows)", message.sender_id, deleted)
        await transport.send_text(message.chat_id, f"🗑️ History cleared ({deleted} messages removed)")

    async def _cmd_stats(self, message: InboundMessage, transport: Transport) -> None:
        stats = self._store.stats()
        since = self._started_at.astimezone(self._tz).strftime("%Y-%m-%d %H:%M:%S")
        text = (
            "📈 *Bot statistics:*\n\n"
            f"📊 Total messages: {stats.total}\n"
            f"⚡ Commands run: {stats.commands}\n"
            f"🕐 Last hour: {stats.last_hour}\n"
            f"📅 Last day: {stats.last_day}\n\n"
            f"🤖 Running since {since}"
        )
        await transport.send_text(message.chat_id, text, markdown=True)
