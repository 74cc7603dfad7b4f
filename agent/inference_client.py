"""Chat-completion client for an OpenAI-compatible endpoint (e.g. llama.cpp).

Two call shapes share one request path:

    complete(key, text)          -- history-backed; the reply is written back
                                    to the store as an assistant message
    complete_once(system, text)  -- stateless one-shot, nothing persisted

Failure handling model:
    Each call is attempted once. Transport failures, non-2xx statuses,
    unparseable bodies and empty choice lists each raise their own error
    class so callers can tell "got an answer" apart from "could not ask".
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from agent.errors import (
    EmptyCompletion,
    MalformedResponse,
    NotConfigured,
    StorageError,
    UpstreamError,
    UpstreamUnreachable,
)
from agent.prompt_assembler import PromptAssembler
from gateway.store import ConversationStore
from relay_constants import (
    CHAT_COMPLETIONS_PATH,
    CHAT_TEMPERATURE,
    DEFAULT_STOP_SEQUENCES,
)

logger = logging.getLogger(__name__)


def _extract_reply(data: Any) -> str:
    """Pull the first choice's message content out of a completion body."""
    if not isinstance(data, dict) or not isinstance(data.get("choices"), list):
        raise MalformedResponse("Failed to parse response: missing choices")
    choices = data["choices"]
    if not choices:
        raise EmptyCompletion()
    try:
        content = choices[0]["message"]["content"]
    except (KeyError, TypeError) as e:
        raise MalformedResponse(f"Failed to parse response: {e}") from e
    if not isinstance(content, str):
        raise MalformedResponse("Failed to parse response: content is not text")
    return content


class InferenceClient:
    """Sends assembled prompts to the completion endpoint.

    Args:
        base_url: Endpoint root (``/v1/chat/completions`` is appended).
            None or empty disables inference.
        store: Conversation store for history and reply persistence.
        http_client: Shared httpx.AsyncClient (owns the request timeout).
        assembler: Prompt assembler; one over ``store`` is built if omitted.
        temperature: Sampling temperature, kept low for stable replies.
        stop: Stop sequences sent with every request.
    """

    def __init__(
        self,
        base_url: Optional[str],
        store: ConversationStore,
        *,
        http_client: httpx.AsyncClient,
        assembler: Optional[PromptAssembler] = None,
        temperature: float = CHAT_TEMPERATURE,
        stop: Sequence[str] = DEFAULT_STOP_SEQUENCES,
    ):
        self._base_url = (base_url or "").rstrip("/")
        self._store = store
        self._http = http_client
        self._assembler = assembler or PromptAssembler(store)
        self._temperature = temperature
        self._stop = list(stop)

    @property
    def configured(self) -> bool:
        return bool(self._base_url)

    @property
    def completions_url(self) -> str:
        return f"{self._base_url}{CHAT_COMPLETIONS_PATH}"

    async def complete(self, conversation_key: str, user_text: str) -> str:
        """Answer one conversational turn using stored history.

        The user text is stored before the request; the reply is stored after
        it. A failure to store the reply is logged, not raised.
        """
        if not self.configured:
            raise NotConfigured("LLAMA_API_URL")

        messages = self._assembler.assemble(conversation_key, user_text)
        reply = await self._post(messages)

        try:
            self._store.append_message(conversation_key, "assistant", reply)
        except StorageError as e:
            logger.error("Failed to store assistant message: %s", e)

        return reply

    async def complete_once(self, system_prompt: str, user_text: str) -> str:
        """Stateless completion with no stored history."""
        if not self.configured:
            raise NotConfigured("LLAMA_API_URL")

        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_text},
        ]
        return await self._post(messages)

    async def _post(self, messages: List[Dict[str, str]]) -> str:
        payload = {
            "messages": messages,
            "temperature": self._temperature,
            "stop": self._stop,
        }
        try:
            response = await self._http.post(self.completions_url, json=payload)
        except httpx.HTTPError as e:
            raise UpstreamUnreachable(f"Failed to reach llama.cpp: {e}") from e

        if not response.is_success:
            raise UpstreamError(
                response.status_code,
                f"llama.cpp returned status {response.status_code}",
            )

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponse(f"Failed to parse response: {e}") from e

        return _extract_reply(data)
