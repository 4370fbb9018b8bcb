"""
Tests for Client: startup, readiness, reconnect policy and REST helpers.
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from shardline.client import Client
from shardline.config import ShardlineConfig
from shardline.errors import SessionInvalidated
from shardline.gateway.opcodes import CloseCode, ConnectionStatus, OpCode

from conftest import API_BASE, FakeWebSocket, make_dispatcher

HELLO = {"op": OpCode.HELLO, "d": {"heartbeat_interval": 45000}}
READY = {
    "op": OpCode.DISPATCH,
    "s": 1,
    "t": "READY",
    "d": {
        "v": 10,
        "session_id": "sess-123",
        "resume_gateway_url": "wss://resume.gateway.test",
        "user": {"id": "80351110224678912"},
    },
}


def api_handler(seen=None):
    def handler(request):
        if seen is not None:
            seen.append(request)
        path = request.url.path
        if path == "/v10/gateway/bot":
            return httpx.Response(200, json={
                "url": "wss://gateway.test",
                "shards": 1,
                "session_start_limit": {"total": 1000, "remaining": 999, "reset_after": 0},
            })
        if path.startswith("/v10/users/"):
            return httpx.Response(200, json={"id": path.rsplit("/", 1)[-1], "username": "logbot"})
        if path.endswith("/messages") and request.method == "POST":
            body = json.loads(request.content)
            return httpx.Response(200, json={"id": "1098765432109876543", **body})
        return httpx.Response(204)
    return handler


def make_client(seen=None, **config) -> Client:
    config = ShardlineConfig(token="test-token", api_url=API_BASE, **config)
    client = Client(config, rest=make_dispatcher(api_handler(seen)))
    client.RECONNECT_BASE_DELAY = 0.01
    return client


async def ready_up(client: Client, ws: FakeWebSocket) -> None:
    ws.feed(HELLO)
    ws.feed(READY)
    await asyncio.wait_for(client.wait_until_ready(), timeout=1.0)


class TestStartup:

    @pytest.mark.asyncio
    async def test_start_resolves_gateway_and_becomes_ready(self):
        ws = FakeWebSocket()
        client = make_client(intents=513)

        with patch("shardline.gateway.connection.websockets.connect", AsyncMock(return_value=ws)) as connect:
            await client.start()
            await ready_up(client, ws)

        assert connect.call_args[0][0] == "wss://gateway.test/?v=10&encoding=json"
        assert client.gateway.status == ConnectionStatus.READY
        assert ws.messages[0]["d"]["intents"] == 513

        health = client.get_health()
        assert health["gateway"]["session_id"] == "sess-123"
        assert health["reconnect_count"] == 0
        await client.close()

    @pytest.mark.asyncio
    async def test_configured_gateway_url_skips_lookup(self):
        seen = []
        ws = FakeWebSocket()
        client = make_client(seen=seen, gateway_url="wss://pinned.gateway.test")

        with patch("shardline.gateway.connection.websockets.connect", AsyncMock(return_value=ws)) as connect:
            await client.start()

        assert seen == []
        assert connect.call_args[0][0].startswith("wss://pinned.gateway.test/")
        await client.close()

    @pytest.mark.asyncio
    async def test_user_callbacks_receive_events(self):
        ws = FakeWebSocket()
        client = make_client()
        events = []

        async def on_event(name, data):
            events.append(name)

        client.register_callback("event", on_event)

        with patch("shardline.gateway.connection.websockets.connect", AsyncMock(return_value=ws)):
            await client.start()
            await ready_up(client, ws)
            await asyncio.sleep(0.01)

        assert events == ["READY"]
        await client.close()


class TestReconnect:

    @pytest.mark.asyncio
    async def test_fatal_close_fails_wait_until_ready(self):
        ws = FakeWebSocket()
        client = make_client()

        with patch("shardline.gateway.connection.websockets.connect", AsyncMock(return_value=ws)):
            await client.start()
            ws.server_close(CloseCode.AUTHENTICATION_FAILED, "Authentication failed.")

            with pytest.raises(SessionInvalidated) as exc_info:
                await asyncio.wait_for(client.wait_until_ready(), timeout=1.0)

        assert exc_info.value.status_code == 4004
        assert client.reconnect_count == 0
        await client.close()

    @pytest.mark.asyncio
    async def test_resumable_close_reconnects_and_resumes(self):
        first, second = FakeWebSocket(), FakeWebSocket()
        client = make_client()

        with patch(
            "shardline.gateway.connection.websockets.connect",
            AsyncMock(side_effect=[first, second]),
        ) as connect:
            await client.start()
            await ready_up(client, first)

            first.server_close(CloseCode.UNKNOWN_ERROR)
            await asyncio.sleep(0.1)

            assert client.reconnect_count == 1
            assert connect.call_args[0][0].startswith("wss://resume.gateway.test/")

            second.feed(HELLO)
            second.feed({"op": OpCode.DISPATCH, "s": 2, "t": "RESUMED", "d": {}})
            await asyncio.wait_for(client.wait_until_ready(), timeout=1.0)

        assert second.ops == [OpCode.RESUME]
        assert second.messages[0]["d"]["seq"] == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_session_timeout_reconnects_with_identify(self):
        first, second = FakeWebSocket(), FakeWebSocket()
        client = make_client()

        with patch(
            "shardline.gateway.connection.websockets.connect",
            AsyncMock(side_effect=[first, second]),
        ) as connect:
            await client.start()
            await ready_up(client, first)

            first.server_close(CloseCode.SESSION_TIMED_OUT)
            await asyncio.sleep(0.1)

            assert client.reconnect_count == 1
            assert connect.call_args[0][0].startswith("wss://gateway.test/")

            await ready_up(client, second)

        assert second.ops[0] == OpCode.IDENTIFY
        assert OpCode.RESUME not in second.ops
        await client.close()

    @pytest.mark.asyncio
    async def test_reconnect_disabled(self):
        ws = FakeWebSocket()
        client = make_client(reconnect=False)

        with patch("shardline.gateway.connection.websockets.connect", AsyncMock(return_value=ws)):
            await client.start()
            await ready_up(client, ws)
            ws.server_close(CloseCode.SESSION_TIMED_OUT)

            with pytest.raises(SessionInvalidated):
                await asyncio.wait_for(client.wait_until_ready(), timeout=1.0)

        assert client.reconnect_count == 0
        await client.close()

    @pytest.mark.asyncio
    async def test_close_does_not_reconnect(self):
        ws = FakeWebSocket()
        client = make_client()

        with patch("shardline.gateway.connection.websockets.connect", AsyncMock(return_value=ws)) as connect:
            await client.start()
            await client.close()
            await asyncio.sleep(0.05)

        assert connect.call_count == 1
        assert client.reconnect_count == 0


class TestRestHelpers:

    @pytest.mark.asyncio
    async def test_fetch_user_and_send_message(self):
        seen = []
        client = make_client(seen=seen)
        await client.rest.start()

        user = await client.fetch_user(80351110224678912)
        message = await client.send_message("857279585568686100", "deploy finished", tts=False)

        assert user == {"id": "80351110224678912", "username": "logbot"}
        assert message["content"] == "deploy finished"
        assert json.loads(seen[1].content) == {"content": "deploy finished", "tts": False}
        await client.rest.close()

    @pytest.mark.asyncio
    async def test_delete_message_with_reason(self):
        seen = []
        client = make_client(seen=seen)
        await client.rest.start()

        await client.delete_message("857279585568686100", "1098765432109876543", reason="spam")

        assert seen[0].method == "DELETE"
        assert seen[0].headers["x-audit-log-reason"] == "spam"
        await client.rest.close()

    @pytest.mark.asyncio
    async def test_add_reaction_uses_reaction_route(self):
        client = make_client()
        await client.rest.start()

        await client.add_reaction("857279585568686100", "1098765432109876543", "👍")

        assert list(client.rest.buckets) == [
            "/channels/857279585568686100/messages/:id/reactions/:emoji/:user_id"
        ]
        await client.rest.close()
