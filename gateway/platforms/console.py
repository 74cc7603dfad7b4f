"""
Console platform adapter.

Reads lines from stdin and prints replies to stdout, for running the relay
locally without a chat platform. Every non-command line is treated as a
message addressed to the bot.
"""

import asyncio
import getpass
import logging
import sys
from typing import Optional

from gateway.platforms.base import COMMAND_PREFIX, BasePlatformAdapter, MessageEvent

logger = logging.getLogger(__name__)

CONSOLE_CHAT_ID = "console"


class ConsoleAdapter(BasePlatformAdapter):
    """Line-oriented stdin/stdout adapter."""

    MAX_MESSAGE_LENGTH = 4000

    def __init__(self, stream_in=None, stream_out=None, user_name: Optional[str] = None):
        super().__init__("console")
        self._in = stream_in or sys.stdin
        self._out = stream_out or sys.stdout
        self._user_name = user_name or getpass.getuser()
        self._read_task: Optional[asyncio.Task] = None
        self.closed = asyncio.Event()

    async def connect(self) -> bool:
        self._running = True
        self._read_task = asyncio.create_task(self._read_loop())
        logger.info("[%s] Reading messages from stdin", self.name)
        return True

    async def disconnect(self) -> None:
        self._running = False
        if self._read_task:
            self._read_task.cancel()
            try:
                await self._read_task
            except asyncio.CancelledError:
                pass
            self._read_task = None
        self.closed.set()

    async def send(self, chat_id: str, text: str) -> None:
        self._out.write(text.rstrip("\n") + "\n")
        self._out.flush()

    async def _read_loop(self) -> None:
        while self._running:
            line = await asyncio.to_thread(self._in.readline)
            if not line:
                break
            text = line.strip()
            if not text:
                continue
            event = MessageEvent(
                text=text,
                chat_id=CONSOLE_CHAT_ID,
                user_id=self._user_name,
                user_name=self._user_name,
                mentions_bot=not text.startswith(COMMAND_PREFIX),
            )
            try:
                await self.handle_message(event)
            except Exception as e:
                logger.error("[%s] Failed to handle message: %s", self.name, e)
        self._running = False
        self.closed.set()
