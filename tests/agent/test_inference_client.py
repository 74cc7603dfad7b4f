"""Tests for InferenceClient against a mocked completion endpoint."""

import json
from unittest import mock

import httpx
import pytest

from agent.errors import (
    EmptyCompletion,
    MalformedResponse,
    NotConfigured,
    StorageError,
    UpstreamError,
    UpstreamUnreachable,
)
from agent.inference_client import InferenceClient, _extract_reply
from gateway.store import ConversationStore, StoredMessage
from relay_constants import DEFAULT_STOP_SEQUENCES

BASE_URL = "http://llm.test:8080/"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _completion(content="Hail, traveller."):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class Endpoint:
    """Records request payloads and answers with a canned response."""

    def __init__(self, response=None):
        self.response = response or httpx.Response(200, json=_completion())
        self.payloads = []
        self.urls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.urls.append(str(request.url))
        self.payloads.append(json.loads(request.content))
        return self.response


@pytest.fixture
def store():
    s = ConversationStore(":memory:")
    s.set_system_prompt("sys")
    yield s
    s.close()


def _make_client(store, handler, base_url=BASE_URL):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return InferenceClient(base_url, store, http_client=http)


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

class TestExtractReply:
    def test_first_choice_content(self):
        assert _extract_reply(_completion("hi")) == "hi"

    def test_empty_choices(self):
        with pytest.raises(EmptyCompletion) as exc:
            _extract_reply({"choices": []})
        assert str(exc.value) == "No response from model"
        assert exc.value.status is None

    @pytest.mark.parametrize("body", [
        {},
        {"choices": "nope"},
        {"choices": [{}]},
        {"choices": [{"message": {"content": None}}]},
        [],
    ])
    def test_malformed(self, body):
        with pytest.raises(MalformedResponse):
            _extract_reply(body)


# ---------------------------------------------------------------------------
# complete()
# ---------------------------------------------------------------------------

class TestComplete:
    @pytest.mark.asyncio
    async def test_payload_shape(self, store):
        endpoint = Endpoint()
        client = _make_client(store, endpoint)

        await client.complete("k", "hello")

        assert endpoint.urls == ["http://llm.test:8080/v1/chat/completions"]
        payload = endpoint.payloads[0]
        assert payload["temperature"] == 0.4
        assert payload["stop"] == list(DEFAULT_STOP_SEQUENCES)
        assert payload["messages"][0] == {"role": "system", "content": "sys"}
        assert payload["messages"][-1]["role"] == "user"
        assert payload["messages"][-1]["content"].startswith("hello\n(Reply in 10 words")

    @pytest.mark.asyncio
    async def test_persists_both_turns(self, store):
        client = _make_client(store, Endpoint())

        reply = await client.complete("k", "hello")

        assert reply == "Hail, traveller."
        assert store.recent_messages("k", 10) == [
            StoredMessage("user", "hello"),
            StoredMessage("assistant", "Hail, traveller."),
        ]

    @pytest.mark.asyncio
    async def test_second_turn_replays_history(self, store):
        endpoint = Endpoint()
        client = _make_client(store, endpoint)

        await client.complete("k", "one")
        await client.complete("k", "two")

        contents = [m["content"] for m in endpoint.payloads[1]["messages"]]
        assert contents[1:3] == ["one", "Hail, traveller."]
        # Directive from the first turn was never stored
        assert "Reply in" not in contents[1]

    @pytest.mark.asyncio
    async def test_user_turn_kept_when_request_fails(self, store):
        client = _make_client(store, Endpoint(httpx.Response(503)))

        with pytest.raises(UpstreamError) as exc:
            await client.complete("k", "hello")

        assert exc.value.status == 503
        assert store.recent_messages("k", 10) == [StoredMessage("user", "hello")]

    @pytest.mark.asyncio
    async def test_empty_choices(self, store):
        client = _make_client(store, Endpoint(httpx.Response(200, json={"choices": []})))
        with pytest.raises(EmptyCompletion):
            await client.complete("k", "hello")

    @pytest.mark.asyncio
    async def test_invalid_json(self, store):
        client = _make_client(store, Endpoint(httpx.Response(200, content=b"<html>")))
        with pytest.raises(MalformedResponse):
            await client.complete("k", "hello")

    @pytest.mark.asyncio
    async def test_unreachable(self, store):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        client = _make_client(store, handler)
        with pytest.raises(UpstreamUnreachable, match="Failed to reach"):
            await client.complete("k", "hello")

    @pytest.mark.asyncio
    async def test_reply_store_failure_still_returns_reply(self, store):
        client = _make_client(store, Endpoint())
        original = store.append_message

        def flaky_append(key, role, content):
            if role == "assistant":
                raise StorageError("disk full")
            return original(key, role, content)

        with mock.patch.object(store, "append_message", side_effect=flaky_append):
            reply = await client.complete("k", "hello")

        assert reply == "Hail, traveller."
        assert store.recent_messages("k", 10) == [StoredMessage("user", "hello")]

    @pytest.mark.asyncio
    async def test_not_configured(self, store):
        endpoint = Endpoint()
        client = _make_client(store, endpoint, base_url=None)
        assert client.configured is False
        with pytest.raises(NotConfigured):
            await client.complete("k", "hello")
        assert endpoint.payloads == []
        assert store.recent_messages("k", 10) == []


# ---------------------------------------------------------------------------
# complete_once()
# ---------------------------------------------------------------------------

class TestCompleteOnce:
    @pytest.mark.asyncio
    async def test_stateless(self, store):
        endpoint = Endpoint()
        client = _make_client(store, endpoint)

        reply = await client.complete_once("be rude", "insult me")

        assert reply == "Hail, traveller."
        assert endpoint.payloads[0]["messages"] == [
            {"role": "system", "content": "be rude"},
            {"role": "user", "content": "insult me"},
        ]
        assert store.recent_messages("k", 10) == []
        assert store._query("SELECT COUNT(*) AS n FROM messages")[0]["n"] == 0

    @pytest.mark.asyncio
    async def test_not_configured(self, store):
        client = _make_client(store, Endpoint(), base_url="")
        with pytest.raises(NotConfigured):
            await client.complete_once("s", "u")
