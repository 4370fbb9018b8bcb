"""
Pytest configuration and shared fakes for shardline tests.
"""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from shardline.gateway.opcodes import OpCode
from shardline.rest.dispatcher import RestDispatcher

API_BASE = "https://api.test"


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection.

    Frames pushed with feed() are yielded by async iteration; close() ends
    the iteration the way a real close handshake would.
    """

    def __init__(self, auto_ack: bool = False):
        self.sent: List[str] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.close_code: Optional[int] = None
        self.close_reason = ""
        self.closed = False
        self.auto_ack = auto_ack

    async def send(self, data: str) -> None:
        self.sent.append(data)
        if self.auto_ack and json.loads(data)["op"] == OpCode.HEARTBEAT:
            self.feed({"op": OpCode.HEARTBEAT_ACK})

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed:
            return
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self.incoming.put_nowait(None)

    def server_close(self, code: int, reason: str = "") -> None:
        """Simulate the server closing the connection."""
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self.incoming.put_nowait(None)

    def feed(self, frame: Dict[str, Any]) -> None:
        self.incoming.put_nowait(json.dumps(frame))

    def feed_raw(self, raw) -> None:
        self.incoming.put_nowait(raw)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item

    # Helpers for assertions

    @property
    def messages(self) -> List[Dict[str, Any]]:
        return [json.loads(s) for s in self.sent]

    @property
    def ops(self) -> List[int]:
        return [m["op"] for m in self.messages]


async def settle(rounds: int = 5) -> None:
    """Let queued callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_dispatcher(handler: Callable, **kwargs) -> RestDispatcher:
    """RestDispatcher wired to an httpx.MockTransport handler."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("global_rate", 1000.0)
    return RestDispatcher(token="test-token", base_url=API_BASE, client=client, **kwargs)


@pytest.fixture
def fake_ws():
    return FakeWebSocket()
