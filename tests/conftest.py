"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK


class FakeSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._incoming: asyncio.Queue[str | bytes | Exception] = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosedOK(None, None)
        self.sent.append(json.loads(message))

    async def recv(self) -> str | bytes:
        item = await self._incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(ConnectionClosedOK(None, None))

    def push(self, frame: dict[str, Any] | str | bytes) -> None:
        """Queue a frame for the client to read."""
        self._incoming.put_nowait(json.dumps(frame) if isinstance(frame, dict) else frame)

    def drop(self) -> None:
        """Simulate the server going away without a close handshake."""
        self.closed = True
        self._incoming.put_nowait(ConnectionClosedError(None, None))

    def actions(self) -> list[str]:
        return [frame["action"] for frame in self.sent]


class FakeServer:
    """Connector that hands out FakeSockets and records each attempt."""

    def __init__(self) -> None:
        self.sockets: list[FakeSocket] = []
        self.urls: list[str] = []
        self.headers: list[dict[str, str]] = []
        self.fail_next = 0

    async def connect(self, url: str, headers: dict[str, str]) -> FakeSocket:
        self.urls.append(url)
        self.headers.append(headers)
        if self.fail_next > 0:
            self.fail_next -= 1
            raise OSError("Connection refused")
        ws = FakeSocket()
        self.sockets.append(ws)
        return ws

    @property
    def latest(self) -> FakeSocket:
        return self.sockets[-1]


@pytest.fixture
def fake_server() -> FakeServer:
    """A fake WebSocket server to pass as ``connector=fake_server.connect``."""
    return FakeServer()


@pytest.fixture
def eventually() -> Callable[..., Awaitable[None]]:
    """Wait until a condition holds, failing the test after ``timeout`` seconds."""

    async def wait(condition: Callable[[], bool], timeout: float = 1.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                pytest.fail("Condition not met in time")
            await asyncio.sleep(0.005)

    return wait
