"""
Text command routing.

Maps ``!command`` messages and bot mentions to the core components and
returns the reply text for the platform adapter to deliver. Every command
handler returns a string; errors from the core are logged and turned into a
single user-facing line.

Commands:
  !help                      -- list commands
  !ping                      -- liveness check
  !hello                     -- greeting
  !systemprompt [text]       -- show or set the system prompt
  !cap [1-500]               -- show or set the reply word cap
  !clear                     -- clear history for the current context
  !contextchannel            -- shared history per channel
  !contextuser               -- separate history per user
  !addcharacter <name>       -- track a character (validated against the API)
  !removecharacter <name>    -- stop tracking a character
  !levelcheck                -- report tracked characters, annotated
  !levelcheckraw             -- report tracked characters, plain
"""

import logging
from typing import Awaitable, Callable, Dict, Optional

from agent.errors import RelayError, StorageError
from agent.fanout import FanoutOrchestrator
from agent.inference_client import InferenceClient
from agent.resource_client import ResourceClient
from gateway.platforms.base import MessageEvent
from gateway.session import ContextMode, build_context_key
from gateway.store import ConversationStore

logger = logging.getLogger(__name__)

HELP_TEMPLATE = (
    "**Commands:**\n"
    "`!help` — Show this message\n"
    "`!ping` — Pong!\n"
    "`!hello` — Greet the bot\n"
    "`!systemprompt [text]` — View or set the system prompt\n"
    "`!cap <1-500>` — Set response word cap (currently **{cap}**)\n"
    "`!clear` — Clear conversation history\n"
    "`!contextchannel` — Shared history per channel\n"
    "`!contextuser` — Separate history per user\n"
    "`!addcharacter <name>` — Track a WoW character\n"
    "`!removecharacter <name>` — Stop tracking a character\n"
    "`!levelcheck` — Check levels of tracked characters (with insults)\n"
    "`!levelcheckraw` — Check levels without insults\n"
    "\n"
    "Mention me to chat!"
)

NOT_CONFIGURED_REPLY = "Battle.net API not configured."
EMPTY_MENTION_REPLY = "You mentioned me but didn't say anything!"
GREETING_REPLY = "IT'S CHRISTINITH! ARE YOU STUPID OR ARE YOU DEAF?!"


class CommandRouter:
    """Dispatches MessageEvents to command handlers or the chat path.

    Args:
        store: Conversation store.
        inference: Completion client for mentions.
        resources: Profile client for character commands.
        orchestrator: Fan-out orchestrator for level checks.
    """

    def __init__(
        self,
        store: ConversationStore,
        inference: InferenceClient,
        resources: ResourceClient,
        orchestrator: FanoutOrchestrator,
    ):
        self.store = store
        self.inference = inference
        self.resources = resources
        self.orchestrator = orchestrator
        self._handlers: Dict[str, Callable[[MessageEvent], Awaitable[str]]] = {
            "help": self._cmd_help,
            "ping": self._cmd_ping,
            "hello": self._cmd_hello,
            "systemprompt": self._cmd_systemprompt,
            "cap": self._cmd_cap,
            "clear": self._cmd_clear,
            "contextchannel": self._cmd_context_channel,
            "contextuser": self._cmd_context_user,
            "addcharacter": self._cmd_add_character,
            "removecharacter": self._cmd_remove_character,
            "levelcheck": self._cmd_level_check,
            "levelcheckraw": self._cmd_level_check_raw,
        }

    async def dispatch(self, event: MessageEvent) -> Optional[str]:
        """Return the reply for ``event``, or None if it needs no reply."""
        if event.is_bot:
            return None

        command = event.get_command()
        if command is not None:
            handler = self._handlers.get(command)
            if handler is None:
                return None
            return await handler(event)

        if event.mentions_bot:
            return await self._chat(event)
        return None

    def context_key_for(self, event: MessageEvent) -> str:
        """Resolve the store partition key for the event's channel and author."""
        try:
            mode = self.store.get_context_mode(event.chat_id)
        except StorageError as e:
            logger.warning("Could not read context mode, using shared: %s", e)
            mode = ContextMode.SHARED
        return build_context_key(event.chat_id, mode, event.user_id)

    # ----- Chat -----

    async def _chat(self, event: MessageEvent) -> str:
        logger.info("Received message from %s: %s", event.user_name, event.text)
        content = event.strip_mention()
        if not content:
            return EMPTY_MENTION_REPLY

        context_key = self.context_key_for(event)
        try:
            return await self.inference.complete(context_key, content)
        except RelayError as e:
            logger.error("LLM error: %s", e)
            return f"Sorry, I couldn't get a response: {e}"

    # ----- Simple commands -----

    async def _cmd_help(self, event: MessageEvent) -> str:
        return HELP_TEMPLATE.format(cap=self.store.get_response_cap())

    async def _cmd_ping(self, event: MessageEvent) -> str:
        return "Pong! 🏓"

    async def _cmd_hello(self, event: MessageEvent) -> str:
        return GREETING_REPLY

    async def _cmd_systemprompt(self, event: MessageEvent) -> str:
        new_prompt = event.get_command_args()
        if not new_prompt:
            return f"**Current system prompt:**\n{self.store.get_system_prompt()}"
        try:
            self.store.set_system_prompt(new_prompt)
        except StorageError as e:
            logger.error("Failed to update system prompt: %s", e)
            return "Failed to update system prompt."
        logger.info("%s updated system prompt to: %s", event.user_name, new_prompt)
        return "System prompt updated!"

    async def _cmd_cap(self, event: MessageEvent) -> str:
        arg = event.get_command_args()
        if not arg:
            cap = self.store.get_response_cap()
            return f"Response word cap is currently **{cap}**. Usage: `!cap <1-500>`"
        try:
            cap = self.store.set_response_cap(arg)
        except ValueError:
            return "Cap must be a number between 1 and 500."
        except StorageError as e:
            logger.error("Failed to set response cap: %s", e)
            return "Failed to save cap."
        logger.info("%s set response cap to %d", event.user_name, cap)
        return f"Response word cap set to **{cap}**."

    async def _cmd_clear(self, event: MessageEvent) -> str:
        try:
            count = self.store.clear_messages(self.context_key_for(event))
        except StorageError as e:
            logger.error("Failed to clear messages: %s", e)
            return "Failed to clear messages."
        return f"Cleared {count} messages."

    async def _set_mode(self, event: MessageEvent, mode: ContextMode, reply: str) -> str:
        try:
            self.store.set_context_mode(event.chat_id, mode.value)
        except StorageError as e:
            logger.error("Failed to set context mode: %s", e)
            return "Failed to set context mode."
        return reply

    async def _cmd_context_channel(self, event: MessageEvent) -> str:
        return await self._set_mode(
            event, ContextMode.SHARED,
            "Context mode set to **channel** — everyone shares history here.",
        )

    async def _cmd_context_user(self, event: MessageEvent) -> str:
        return await self._set_mode(
            event, ContextMode.PER_PARTICIPANT,
            "Context mode set to **user** — everyone gets their own history here.",
        )

    # ----- Character tracking -----

    async def _cmd_add_character(self, event: MessageEvent) -> str:
        name = event.get_command_args()
        if not name:
            return "Usage: `!addcharacter <name>`"
        if not self.resources.configured:
            return NOT_CONFIGURED_REPLY

        try:
            character = await self.resources.fetch(name)
        except RelayError as e:
            return str(e)

        try:
            was_new = self.store.add_tracked_name(character.name, event.user_id)
        except StorageError as e:
            logger.error("DB error adding character: %s", e)
            return "Failed to save character."

        summary = f"Level {character.rank} {character.label}"
        if was_new:
            return f"Now tracking **{character.name}** — {summary}"
        return f"**{character.name}** is already tracked — {summary}"

    async def _cmd_remove_character(self, event: MessageEvent) -> str:
        name = event.get_command_args()
        if not name:
            return "Usage: `!removecharacter <name>`"
        try:
            removed = self.store.remove_tracked_name(name)
        except StorageError as e:
            logger.error("DB error removing character: %s", e)
            return "Failed to remove character."
        if removed:
            return f"Removed **{name}** from tracking."
        return f"**{name}** is not being tracked."

    async def _level_check(self, annotate: bool) -> str:
        if not self.resources.configured:
            return NOT_CONFIGURED_REPLY
        try:
            names = self.store.list_tracked_names()
        except StorageError as e:
            logger.error("Failed to list tracked characters: %s", e)
            names = []
        report = await self.orchestrator.report(names, annotate=annotate)
        return report.render()

    async def _cmd_level_check(self, event: MessageEvent) -> str:
        return await self._level_check(annotate=True)

    async def _cmd_level_check_raw(self, event: MessageEvent) -> str:
        return await self._level_check(annotate=False)
