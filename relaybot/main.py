"""Relay bot runtime entry point."""

from __future__ import annotations

import argparse
import logging
import sqlite3
import sys
from datetime import datetime, timezone
from pathlib import Path

from relaybot.commands import CommandDispatcher
from relaybot.health.server import HealthServer
from relaybot.llm import ClaudeClient
from relaybot.memory.engine import MemoryEngine
from relaybot.memory.event_log import EventLogStore
from relaybot.memory.message_store import MessageStore
from relaybot.persona import build_system_prompt, load_persona
from relaybot.router import MessageRouter
from relaybot.settings import SettingsError, load_settings
from relaybot.telegram_bot import TelegramBot

logger = logging.getLogger("relaybot")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the Telegram to Claude relay bot")
    parser.add_argument(
        "--config",
        default=None,
        help="Optional YAML config file (defaults to $RELAYBOT_CONFIG)",
    )
    return parser


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # httpx logs every Telegram poll at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(Path(args.config) if args.config else None)
    except SettingsError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    memory_engine = MemoryEngine(settings.db_path)
    events: EventLogStore | None = None
    health_server: HealthServer | None = None
    exit_code = 0
    try:
        memory_engine.initialize()
        conn = memory_engine.connect()

        store = MessageStore(conn)
        events = EventLogStore(conn)
        persona = load_persona(settings.persona_file)
        llm = ClaudeClient(
            settings.llm,
            system_prompt=lambda: build_system_prompt(persona, settings.timezone),
            events=events,
        )
        dispatcher = CommandDispatcher(
            store=store,
            llm=llm,
            settings=settings,
            events=events,
            started_at=datetime.now(timezone.utc),
        )
        router = MessageRouter(
            store=store,
            llm=llm,
            dispatcher=dispatcher,
            events=events,
            authorized_user_id=settings.authorized_user_id,
            assistant_name=settings.assistant_name,
        )
        health_server = HealthServer(
            host=settings.host,
            port=settings.port,
            stats_provider=lambda: store.stats().as_dict(),
            events_provider=events.counts_by_type,
        )
        telegram_bot = TelegramBot(
            settings.bot_token,
            router,
            commands=dispatcher.commands,
            events=events,
        )

        logger.info(
            "Starting relay bot: model=%s db=%s authorized_user=%s",
            settings.llm.model,
            settings.db_path,
            settings.authorized_user_id if settings.authorized_user_id is not None else "anyone",
        )
        events.record("bot_boot", {"port": settings.port, "model": settings.llm.model}, decision="allow")
        health_server.start()
        telegram_bot.run()
    except (OSError, sqlite3.Error) as exc:
        logger.error("Relay bot stopped: %s", exc)
        exit_code = 1
    finally:
        logger.info("Shutting down bot...")
        if events is not None:
            try:
                events.record("bot_shutdown", {"exit_code": exit_code}, decision="allow")
            except sqlite3.Error as exc:
                logger.warning("Could not record bot_shutdown event: %s", exc)
        if health_server is not None:
            health_server.stop()
        memory_engine.close()
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
