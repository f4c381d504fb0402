from __future__ import annotations

import contextlib
import io
import os
import sqlite3
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from relaybot import main as runtime
from relaybot.memory.engine import MemoryEngine


class MainTests(unittest.TestCase):
    def test_missing_secrets_exit_with_diagnostic(self) -> None:
        stderr = io.StringIO()
        with patch.dict(os.environ, {}, clear=True), contextlib.redirect_stderr(stderr):
            code = runtime.main([])
        self.assertEqual(code, 2)
        self.assertIn("BOT_TOKEN", stderr.getvalue())

    def test_wires_services_and_closes_store(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "data" / "bot_history.db"
            env = {
                "BOT_TOKEN": "123:abc",
                "CLAUDE_API_KEY": "sk-test",
                "YOUR_TELEGRAM_ID": "42",
                "PORT": "0",
                "BOT_DB_PATH": str(db_path),
            }
            with patch.dict(os.environ, env, clear=True), patch.object(runtime, "TelegramBot") as bot_cls:
                code = runtime.main([])

            self.assertEqual(code, 0)
            bot_cls.return_value.run.assert_called_once_with()
            self.assertEqual(bot_cls.call_args.args[0], "123:abc")
            router = bot_cls.call_args.args[1]
            self.assertFalse(router.is_authorized(7))
            self.assertTrue(router.is_authorized(42))

            conn = sqlite3.connect(db_path)
            try:
                events = [row[0] for row in conn.execute("SELECT event_type FROM events ORDER BY id")]
            finally:
                conn.close()
            self.assertEqual(events, ["bot_boot", "bot_shutdown"])

    def test_startup_failure_closes_store_and_exits_nonzero(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "bot_history.db"
            env = {"BOT_TOKEN": "123:abc", "CLAUDE_API_KEY": "sk-test", "BOT_DB_PATH": str(db_path)}
            with (
                patch.dict(os.environ, env, clear=True),
                patch.object(runtime, "TelegramBot") as bot_cls,
                patch.object(runtime.HealthServer, "start", side_effect=OSError(98, "Address already in use")),
                patch.object(MemoryEngine, "close", autospec=True, side_effect=MemoryEngine.close) as close,
                self.assertLogs("relaybot", level="ERROR") as logs,
            ):
                code = runtime.main([])

            self.assertEqual(code, 1)
            bot_cls.return_value.run.assert_not_called()
            close.assert_called_once()
            self.assertIn("Address already in use", "\n".join(logs.output))

            conn = sqlite3.connect(db_path)
            try:
                events = [row[0] for row in conn.execute("SELECT event_type FROM events ORDER BY id")]
            finally:
                conn.close()
            self.assertEqual(events, ["bot_boot", "bot_shutdown"])


if __name__ == "__main__":
    unittest.main()
