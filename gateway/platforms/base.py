"""
Platform adapter contract.

Every messaging platform integration subclasses BasePlatformAdapter and
turns inbound platform messages into MessageEvent objects. The runner
registers one message handler per adapter; whatever string the handler
returns is sent back to the originating chat.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

COMMAND_PREFIX = "!"


@dataclass
class MessageEvent:
    """One inbound chat message, platform-independent."""

    text: str = ""
    chat_id: str = ""
    user_id: str = ""
    user_name: str = ""
    is_bot: bool = False
    mentions_bot: bool = False

    def is_command(self) -> bool:
        return self.text.startswith(COMMAND_PREFIX)

    def get_command(self) -> Optional[str]:
        """Return the lowercased command word, or None for plain text."""
        if not self.is_command():
            return None
        parts = self.text[len(COMMAND_PREFIX):].split(maxsplit=1)
        return parts[0].lower() if parts else ""

    def get_command_args(self) -> str:
        """Return the text after the command word (full text if not a command)."""
        if not self.is_command():
            return self.text
        parts = self.text[len(COMMAND_PREFIX):].split(maxsplit=1)
        return parts[1].strip() if len(parts) > 1 else ""

    def strip_mention(self) -> str:
        """Drop a leading ``<@id>`` mention and return the remaining text."""
        text = self.text.strip()
        if text.startswith("<@") and ">" in text:
            return text.split(">", 1)[1].strip()
        return text


MessageHandler = Callable[[MessageEvent], Awaitable[Optional[str]]]


class BasePlatformAdapter(ABC):
    """
    Base class for messaging platform adapters.

    Subclasses implement connect/disconnect/send and call
    ``await self.handle_message(event)`` for each inbound message.
    """

    MAX_MESSAGE_LENGTH = 2000

    def __init__(self, name: str):
        self.name = name
        self._running = False
        self._message_handler: Optional[MessageHandler] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def set_message_handler(self, handler: MessageHandler) -> None:
        self._message_handler = handler

    @abstractmethod
    async def connect(self) -> bool:
        """Connect to the platform. Returns True on success."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect and release platform resources."""

    @abstractmethod
    async def send(self, chat_id: str, text: str) -> None:
        """Deliver one message to a chat."""

    async def handle_message(self, event: MessageEvent) -> None:
        """Run the registered handler and send its reply, if any."""
        if self._message_handler is None:
            logger.debug("[%s] No handler registered, dropping message", self.name)
            return
        reply = await self._message_handler(event)
        if reply:
            await self.send(event.chat_id, self.truncate_message(reply))

    @classmethod
    def truncate_message(cls, text: str) -> str:
        """Cut text that exceeds the platform limit, leaving room for an ellipsis."""
        limit = cls.MAX_MESSAGE_LENGTH
        if len(text) <= limit:
            return text
        return text[: limit - 10] + "..."
