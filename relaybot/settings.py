"""Runtime settings loader: YAML file plus environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

ENV_BOT_TOKEN = "BOT_TOKEN"
ENV_LLM_API_KEY = "CLAUDE_API_KEY"
ENV_AUTHORIZED_USER_ID = "YOUR_TELEGRAM_ID"
ENV_PORT = "PORT"
ENV_DB_PATH = "BOT_DB_PATH"
ENV_LOG_LEVEL = "LOG_LEVEL"
ENV_CONFIG_PATH = "RELAYBOT_CONFIG"

DEFAULT_PORT = 3000
DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_API_BASE = "https://api.anthropic.com/v1"
DEFAULT_API_VERSION = "2023-06-01"


@dataclass(frozen=True)
class LLMSettings:
    api_key: str
    model: str = DEFAULT_MODEL
    max_tokens: int = 1500
    base_url: str = DEFAULT_API_BASE
    api_version: str = DEFAULT_API_VERSION
    timeout_seconds: int = 60


@dataclass(frozen=True)
class Settings:
    bot_token: str
    llm: LLMSettings
    authorized_user_id: int | None = None
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    db_path: Path = Path("bot_history.db")
    log_level: str = "INFO"
    timezone: str = "Asia/Yerevan"
    persona_file: Path | None = None
    assistant_name: str = "Claude"
    history_default_minutes: int = 30
    history_limit: int = 50
    history_inline_max_chars: int = 3000
    analyze_minutes: int = 60
    summary_default_minutes: int = 30


class SettingsError(ValueError):
    """Raised when runtime configuration is missing or invalid."""


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise SettingsError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    if not isinstance(raw, dict):
        raise SettingsError(f"Config file must contain a mapping: {path}")
    llm_raw = raw.get("llm") or {}
    if not isinstance(llm_raw, dict):
        raise SettingsError("'llm' section must be a mapping")
    return raw


def _as_int(value: Any, key: str, *, minimum: int = 1) -> int:
    try:
        parsed = int(str(value).strip())
    except ValueError as exc:
        raise SettingsError(f"{key} must be an integer, got {value!r}") from exc
    if parsed < minimum:
        raise SettingsError(f"{key} must be >= {minimum}, got {parsed}")
    return parsed


def _require(env: Mapping[str, str], key: str) -> str:
    value = (env.get(key) or "").strip()
    if not value:
        raise SettingsError(f"Missing required environment variable: {key}")
    return value


def load_settings(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Build settings from defaults, an optional YAML file and the environment."""
    env = os.environ if environ is None else environ
    if config_path is None and env.get(ENV_CONFIG_PATH):
        config_path = Path(env[ENV_CONFIG_PATH])
    raw = _read_config_file(config_path) if config_path is not None else {}
    llm_raw = raw.get("llm") or {}

    bot_token = _require(env, ENV_BOT_TOKEN)
    api_key = _require(env, ENV_LLM_API_KEY)

    authorized_raw = (env.get(ENV_AUTHORIZED_USER_ID) or "").strip()
    authorized_user_id = None
    if authorized_raw:
        authorized_user_id = _as_int(authorized_raw, ENV_AUTHORIZED_USER_ID)

    port = _as_int(env.get(ENV_PORT) or raw.get("port", DEFAULT_PORT), "port", minimum=0)
    if port > 65535:
        raise SettingsError(f"port out of range: {port}")

    tz_name = str(raw.get("timezone", "Asia/Yerevan")).strip()
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise SettingsError(f"Unknown timezone: {tz_name}") from exc

    persona_raw = raw.get("persona_file")
    persona_file = None
    if persona_raw:
        persona_file = Path(str(persona_raw))
        if not persona_file.is_absolute() and config_path is not None:
            persona_file = config_path.parent / persona_file

    llm = LLMSettings(
        api_key=api_key,
        model=str(llm_raw.get("model", DEFAULT_MODEL)).strip() or DEFAULT_MODEL,
        max_tokens=_as_int(llm_raw.get("max_tokens", 1500), "llm.max_tokens"),
        base_url=str(llm_raw.get("base_url", DEFAULT_API_BASE)).rstrip("/"),
        api_version=str(llm_raw.get("api_version", DEFAULT_API_VERSION)),
        timeout_seconds=_as_int(llm_raw.get("timeout_seconds", 60), "llm.timeout_seconds"),
    )

    return Settings(
        bot_token=bot_token,
        llm=llm,
        authorized_user_id=authorized_user_id,
        host=str(raw.get("host", "0.0.0.0")),
        port=port,
        db_path=Path(env.get(ENV_DB_PATH) or raw.get("db_path", "bot_history.db")),
        log_level=str(env.get(ENV_LOG_LEVEL) or raw.get("log_level", "INFO")).upper(),
        timezone=tz_name,
        persona_file=persona_file,
        assistant_name=str(raw.get("assistant_name", "Claude")).strip() or "Claude",
        history_default_minutes=_as_int(raw.get("history_default_minutes", 30), "history_default_minutes"),
        history_limit=_as_int(raw.get("history_limit", 50), "history_limit"),
        history_inline_max_chars=_as_int(raw.get("history_inline_max_chars", 3000), "history_inline_max_chars"),
        analyze_minutes=_as_int(raw.get("analyze_minutes", 60), "analyze_minutes"),
        summary_default_minutes=_as_int(raw.get("summary_default_minutes", 30), "summary_default_minutes"),
    )
