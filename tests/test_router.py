from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from relaybot.commands import CommandDispatcher
from relaybot.llm import ERROR_MARKER
from relaybot.memory.engine import MemoryEngine
from relaybot.memory.event_log import EventLogStore
from relaybot.memory.message_store import MessageStore
from relaybot.router import ACCESS_DENIED_TEXT, GENERIC_FAILURE_TEXT, MessageRouter
from relaybot.settings import LLMSettings, Settings
from relaybot.transport import InboundMessage, Transport


class FakeTransport(Transport):
    def __init__(self) -> None:
        self.texts: list[tuple[int, str, bool]] = []
        self.documents: list[tuple[int, bytes, str, str]] = []
        self.typing: list[int] = []

    async def send_text(self, chat_id: int, text: str, *, markdown: bool = False) -> None:
        self.texts.append((chat_id, text, markdown))

    async def send_document(self, chat_id: int, content: bytes, *, filename: str, caption: str) -> None:
        self.documents.append((chat_id, content, filename, caption))

    async def send_typing(self, chat_id: int) -> None:
        self.typing.append(chat_id)


class FakeLLM:
    def __init__(self, reply: str = "model reply", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[tuple[str, list[dict[str, str]] | None]] = []

    def complete(self, prompt: str, history: list[dict[str, str]] | None = None) -> str:
        self.calls.append((prompt, history))
        if self.error is not None:
            raise self.error
        return self.reply


OWNER_ID = 42


def _message(text: str, *, sender_id: int = OWNER_ID, forwarded: bool = False) -> InboundMessage:
    return InboundMessage(chat_id=10, sender_id=sender_id, display_name="ann", text=text, forwarded=forwarded)


class MessageRouterTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.engine = MemoryEngine(Path(self._tmpdir.name) / "bot.db")
        self.engine.initialize()
        conn = self.engine.connect()
        self.store = MessageStore(conn)
        self.events = EventLogStore(conn)
        self.llm = FakeLLM()
        self.transport = FakeTransport()
        self.settings = Settings(bot_token="t", llm=LLMSettings(api_key="k"), timezone="UTC")

    def tearDown(self) -> None:
        self.engine.close()
        self._tmpdir.cleanup()

    def _router(self, authorized_user_id: int | None = OWNER_ID) -> MessageRouter:
        dispatcher = CommandDispatcher(store=self.store, llm=self.llm, settings=self.settings, events=self.events)
        return MessageRouter(
            store=self.store,
            llm=self.llm,
            dispatcher=dispatcher,
            events=self.events,
            authorized_user_id=authorized_user_id,
        )

    async def test_plain_text_stores_user_and_assistant_rows(self) -> None:
        await self._router().handle(_message("what time is it?"), self.transport)

        self.assertEqual(self.llm.calls, [("what time is it?", None)])
        self.assertEqual(self.transport.typing, [10])
        self.assertEqual(self.transport.texts, [(10, "model reply", False)])
        rows = self.store.query_recent(30, 50)
        self.assertEqual(len(rows), 2)
        self.assertEqual((rows[0].user_id, rows[0].kind, rows[0].is_command), (OWNER_ID, "text", False))
        self.assertEqual((rows[1].user_id, rows[1].display_name, rows[1].kind), (0, "Claude", "response"))
        self.assertEqual(rows[1].text, "model reply")

    async def test_unauthorized_sender_is_denied_without_persistence(self) -> None:
        await self._router().handle(_message("hi", sender_id=7), self.transport)

        self.assertEqual(self.transport.texts, [(10, ACCESS_DENIED_TEXT, False)])
        self.assertEqual(self.store.stats().total, 0)
        self.assertEqual(self.llm.calls, [])
        denied = self.events.latest(5, event_type="message_denied")
        self.assertEqual(denied[0]["payload"]["user_id"], 7)

    async def test_unauthorized_command_is_denied(self) -> None:
        await self._router().handle(_message("/clear", sender_id=7), self.transport)
        self.assertEqual(self.transport.texts, [(10, ACCESS_DENIED_TEXT, False)])
        self.assertEqual(self.store.stats().total, 0)

    async def test_everyone_allowed_without_configured_user(self) -> None:
        await self._router(authorized_user_id=None).handle(_message("hi", sender_id=7), self.transport)
        self.assertEqual(self.transport.texts, [(10, "model reply", False)])
        self.assertEqual(self.store.stats().total, 2)

    async def test_forwarded_message_is_ignored(self) -> None:
        await self._router().handle(_message("forwarded text", forwarded=True), self.transport)

        self.assertEqual(self.llm.calls, [])
        self.assertEqual(self.transport.texts, [])
        self.assertEqual(self.transport.typing, [])
        self.assertEqual(self.store.stats().total, 0)
        self.assertEqual(self.events.counts_by_type(), {"forwarded_ignored": 1})

    async def test_known_command_is_persisted_and_dispatched(self) -> None:
        await self._router().handle(_message("/stats"), self.transport)

        self.assertEqual(self.llm.calls, [])
        rows = self.store.query_recent(30, 50)
        self.assertEqual(len(rows), 1)
        self.assertTrue(rows[0].is_command)
        self.assertIn("Total messages: 1", self.transport.texts[0][1])

    async def test_clear_removes_its_own_row(self) -> None:
        router = self._router()
        await router.handle(_message("hello"), self.transport)
        await router.handle(_message("/clear"), self.transport)
        self.assertEqual(self.store.stats().total, 0)

    async def test_unknown_command_falls_through_to_llm(self) -> None:
        await self._router().handle(_message("/translate bonjour"), self.transport)

        self.assertEqual(self.llm.calls, [("/translate bonjour", None)])
        rows = self.store.query_recent(30, 50)
        self.assertEqual([r.is_command for r in rows], [True, False])

    async def test_blank_text_is_stored_but_not_sent_to_llm(self) -> None:
        await self._router().handle(_message(""), self.transport)
        await self._router().handle(_message("   "), self.transport)

        self.assertEqual(self.llm.calls, [])
        self.assertEqual(self.transport.texts, [])
        self.assertEqual(self.store.stats().total, 2)

    async def test_llm_error_string_is_relayed(self) -> None:
        self.llm.reply = f"{ERROR_MARKER} Claude API error: HTTP 500: boom"
        await self._router().handle(_message("hello"), self.transport)
        self.assertTrue(self.transport.texts[0][1].startswith(ERROR_MARKER))

    async def test_unexpected_error_sends_generic_failure(self) -> None:
        self.llm.error = RuntimeError("thread pool gone")
        await self._router().handle(_message("hello"), self.transport)

        self.assertEqual(self.transport.texts, [(10, GENERIC_FAILURE_TEXT, False)])
        rows = self.store.query_recent(30, 50)
        self.assertEqual([r.user_id for r in rows], [OWNER_ID])
        self.assertEqual(self.events.counts_by_type(), {"message_failed": 1})

    async def test_storage_failure_does_not_block_reply(self) -> None:
        self.engine.close()
        await self._router().handle(_message("hello"), self.transport)
        self.assertEqual(self.transport.texts, [(10, "model reply", False)])


if __name__ == "__main__":
    unittest.main()
