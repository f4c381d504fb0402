"""Minimal Anthropic Messages API client."""

from __future__ import annotations

import http.client
import json
import logging
import sqlite3
from typing import Any, Callable
from urllib import error, request

from relaybot.memory.event_log import EventLogStore
from relaybot.settings import LLMSettings

ERROR_MARKER = "❌"

logger = logging.getLogger(__name__)


class LLMError(RuntimeError):
    """Raised when the completion endpoint fails or returns an unusable body."""


def _extract_text(data: Any) -> str:
    if not isinstance(data, dict):
        raise LLMError(f"unexpected response: {data!r}")
    content = data.get("content")
    if isinstance(content, list) and content:
        first = content[0]
        if isinstance(first, dict) and isinstance(first.get("text"), str):
            return first["text"]
    raise LLMError(f"unexpected response: {data}")


def _error_detail(raw: str) -> str:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return raw.strip() or "Unknown error"
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict) and err.get("message"):
        return str(err["message"])
    return "Unknown error"


def send_messages(
    messages: list[dict[str, str]],
    api_key: str,
    *,
    system: str,
    base_url: str,
    model: str,
    max_tokens: int,
    api_version: str,
    timeout: int = 60,
) -> str:
    """
    POST to the Messages endpoint and return the first text block.
    Raises LLMError on HTTP errors, network failures and malformed bodies.
    """
    url = base_url.rstrip("/") + "/messages"
    body = {
        "model": model,
        "max_tokens": max_tokens,
        "system": system,
        "messages": messages,
    }
    encoded = json.dumps(body).encode("utf-8")
    headers: dict[str, str] = {
        "Content-Type": "application/json",
        "x-api-key": api_key,
        "anthropic-version": api_version,
    }
    req = request.Request(url, data=encoded, headers=headers, method="POST")
    try:
        with request.urlopen(req, timeout=timeout) as response:  # noqa: S310
            raw = response.read().decode("utf-8")
    except error.HTTPError as exc:
        body_read = exc.read().decode("utf-8", errors="replace")
        raise LLMError(f"HTTP {exc.code}: {_error_detail(body_read)}") from exc
    except (OSError, http.client.HTTPException) as exc:
        raise LLMError(f"network error: {exc!r}") from exc
    except UnicodeDecodeError as exc:
        raise LLMError("response is not valid UTF-8") from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LLMError("response is not valid JSON") from exc
    return _extract_text(data).strip()


class ClaudeClient:
    """Non-raising boundary around ``send_messages``: failures become displayable text."""

    def __init__(
        self,
        settings: LLMSettings,
        system_prompt: Callable[[], str],
        events: EventLogStore | None = None,
    ) -> None:
        self._settings = settings
        self._system_prompt = system_prompt
        self._events = events

    @property
    def model(self) -> str:
        return self._settings.model

    def complete(self, prompt: str, history: list[dict[str, str]] | None = None) -> str:
        messages: list[dict[str, str]] = [dict(turn) for turn in (history or [])]
        messages.append({"role": "user", "content": prompt})
        try:
            try:
                system = self._system_prompt()
            except Exception as exc:
                raise LLMError(f"could not build system prompt: {exc}") from exc
            return send_messages(
                messages,
                self._settings.api_key,
                system=system,
                base_url=self._settings.base_url,
                model=self._settings.model,
                max_tokens=self._settings.max_tokens,
                api_version=self._settings.api_version,
                timeout=self._settings.timeout_seconds,
            )
        except LLMError as exc:
            logger.error("Claude API error: %s", exc)
            if self._events is not None:
                try:
                    self._events.record(
                        "llm_error",
                        {"model": self._settings.model, "error": str(exc)[:500]},
                        decision="deny",
                    )
                except sqlite3.Error as db_exc:
                    logger.warning("Could not record llm_error event: %s", db_exc)
            return f"{ERROR_MARKER} Claude API error: {exc}"
