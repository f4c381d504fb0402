"""HTTP liveness and status server."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable

logger = logging.getLogger(__name__)


class HealthServer:
    def __init__(
        self,
        *,
        host: str,
        port: int,
        stats_provider: Callable[[], dict[str, Any]] | None = None,
        events_provider: Callable[[], dict[str, int]] | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._stats_provider = stats_provider
        self._events_provider = events_provider
        self._started_at = time.monotonic()
        self._thread: threading.Thread | None = None
        self._httpd: ThreadingHTTPServer | None = None

    @property
    def port(self) -> int:
        """Bound port; differs from the configured one when started with port 0."""
        if self._httpd is not None:
            return int(self._httpd.server_address[1])
        return self._port

    def start(self) -> None:
        handler_cls = self._build_handler()
        self._httpd = ThreadingHTTPServer((self._host, self._port), handler_cls)
        self._thread = threading.Thread(target=self._httpd.serve_forever, daemon=True)
        self._thread.start()
        logger.info("Health server listening on %s:%s", self._host, self.port)

    def stop(self) -> None:
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd.server_close()
        if self._thread is not None:
            self._thread.join(timeout=2)
        self._httpd = None
        self._thread = None

    def _build_handler(self) -> type[BaseHTTPRequestHandler]:
        stats_provider = self._stats_provider
        events_provider = self._events_provider
        started_at = self._started_at

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:  # noqa: N802
                path = self.path.split("?")[0]
                if path == "/health":
                    self._write_json(
                        200,
                        {
                            "status": "ok",
                            "uptime": round(time.monotonic() - started_at, 3),
                            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
                        },
                    )
                    return

                if path == "/status":
                    if stats_provider is None:
                        self._write_json(404, {"error": "Not found"})
                        return
                    payload: dict[str, Any] = {"status": "ok"}
                    try:
                        payload["messages"] = stats_provider()
                        if events_provider is not None:
                            payload["events"] = events_provider()
                    except sqlite3.Error as exc:
                        logger.error("Status query failed: %s", exc)
                        self._write_json(503, {"status": "error", "error": "store unavailable"})
                        return
                    self._write_json(200, payload)
                    return

                self._write_json(404, {"error": "Not found"})

            def log_message(self, format: str, *args: Any) -> None:  # noqa: A003
                # Access logs would drown the bot's own log output.
                _ = (format, args)
                return

            def _write_json(self, status_code: int, payload: dict[str, Any]) -> None:
                encoded = json.dumps(payload, ensure_ascii=True).encode("utf-8")
                self.send_response(status_code)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(encoded)))
                self.end_headers()
                self.wfile.write(encoded)

        return Handler
