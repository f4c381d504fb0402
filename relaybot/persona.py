"""Load the assistant persona and build the system preamble sent with every request."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

DEFAULT_PERSONA = (
    "You are a personal assistant reachable through a Telegram bot. "
    "Answer briefly, in a friendly conversational tone, and stay on point. "
    "If the user pastes dialogues or messages, help process or analyze them as asked."
)


def load_persona(path: Path | None) -> str:
    """Return persona text from ``path``; the built-in persona if unset or empty."""
    if path is None or not path.exists():
        return DEFAULT_PERSONA
    text = path.read_text(encoding="utf-8").strip()
    return text or DEFAULT_PERSONA


def build_system_prompt(persona: str, timezone_name: str, now: datetime | None = None) -> str:
    tz = ZoneInfo(timezone_name)
    current = now.astimezone(tz) if now is not None else datetime.now(tz)
    return f"{persona}\nCurrent time: {current.strftime('%Y-%m-%d %H:%M:%S %Z')}."
