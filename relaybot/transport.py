"""Transport-neutral inbound message type and outbound reply interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class InboundMessage:
    chat_id: int
    sender_id: int
    display_name: str
    text: str
    forwarded: bool = False


class TransportError(RuntimeError):
    """Raised when the messaging platform rejects or fails an outbound call."""


class Transport(ABC):
    @abstractmethod
    async def send_text(self, chat_id: int, text: str, *, markdown: bool = False) -> None:
        """Send a text reply."""

    @abstractmethod
    async def send_document(self, chat_id: int, content: bytes, *, filename: str, caption: str) -> None:
        """Send ``content`` as a file attachment."""

    @abstractmethod
    async def send_typing(self, chat_id: int) -> None:
        """Show the typing indicator."""
