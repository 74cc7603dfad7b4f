"""History-backed prompt assembly for the chat-completion endpoint.

Owns the ordering contract for a conversational turn:
    - the new user text is persisted before anything is read back, so a
      failure later in the turn never loses the user's input
    - the stored system prompt goes first (omitted entirely when empty)
    - the last N stored messages follow, oldest first
    - a reply-length directive is appended to the final message only when
      that message is a user turn, and only in memory
"""

from typing import Dict, List

from gateway.store import ConversationStore
from relay_constants import HISTORY_LIMIT


def reply_length_directive(cap: int) -> str:
    """Return the suffix appended to the final user turn."""
    return f"\n(Reply in {cap} words or less. Stay in character.)"


class PromptAssembler:
    """Builds the role-tagged message list for one conversational turn.

    Args:
        store: Conversation store holding config and message history.
        history_limit: How many stored messages to replay (default 10).
    """

    def __init__(self, store: ConversationStore, *, history_limit: int = HISTORY_LIMIT):
        self._store = store
        self._history_limit = history_limit

    @property
    def history_limit(self) -> int:
        return self._history_limit

    def assemble(self, conversation_key: str, new_user_text: str) -> List[Dict[str, str]]:
        """Persist the user turn and return the full prompt for it.

        Raises:
            StorageError: the store failed to record or read history.
        """
        self._store.append_message(conversation_key, "user", new_user_text)

        messages: List[Dict[str, str]] = []

        system_prompt = self._store.get_system_prompt()
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})

        for m in self._store.recent_messages(conversation_key, self._history_limit):
            messages.append({"role": m.role, "content": m.content})

        if messages and messages[-1]["role"] == "user":
            cap = self._store.get_response_cap()
            last = messages[-1]
            messages[-1] = {
                "role": last["role"],
                "content": last["content"] + reply_length_directive(cap),
            }

        return messages
