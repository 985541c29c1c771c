#!/usr/bin/env python3
"""Pytest fixtures for clipsync tests.

Provides a scripted stand-in for a relay WebSocket connection, a patched
connect_to_relay, stores, settings, and helpers for waiting on connection
state.
"""

import asyncio
from collections.abc import Generator
from unittest.mock import AsyncMock, patch

import pytest
from websockets.exceptions import ConnectionClosedOK

from clipsync.connection import ConnectionManager, TransportError
from clipsync.connection_state import ConnectionState
from clipsync.relay import RelayServer
from clipsync.settings import Settings
from clipsync.store import MemoryStore

_CLOSE = object()


class FakeWebSocket:
    """Stand-in for a websockets ClientConnection.

    Frames queued with feed() are yielded by async iteration. drop()
    simulates the relay closing the connection.
    """

    def __init__(self, *frames: str | bytes) -> None:
        self.sent: list[str] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()
        for frame in frames:
            self.feed(frame)

    def feed(self, frame: str | bytes) -> None:
        """Queue an inbound frame."""
        self._inbox.put_nowait(frame)

    def drop(self) -> None:
        """Close the connection from the relay side."""
        self._inbox.put_nowait(_CLOSE)

    async def send(self, frame: str) -> None:
        if self.closed:
            raise ConnectionClosedOK(None, None)
        self.sent.append(frame)

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(_CLOSE)

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> str | bytes:
        frame = await self._inbox.get()
        if frame is _CLOSE:
            self.closed = True
            raise StopAsyncIteration
        return frame


def connect_sequence(*results: object):
    """Build a connect_to_relay replacement returning results in order.

    Each result is either a FakeWebSocket to return or an exception to
    raise. Once exhausted, every further call raises TransportError.
    """
    remaining = list(results)

    async def fake_connect(url: str) -> FakeWebSocket:
        if not remaining:
            raise TransportError(f"Failed to connect to {url}: refused")
        result = remaining.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result

    return fake_connect


@pytest.fixture
def mock_connect() -> Generator[AsyncMock, None, None]:
    """Patch connect_to_relay; set side_effect with connect_sequence()."""
    with patch("clipsync.connection.connect_to_relay", new_callable=AsyncMock) as mocked:
        yield mocked


async def wait_state(manager: ConnectionManager, state: ConnectionState, timeout: float = 2.0) -> None:
    """Wait for manager to enter state, failing the test on timeout."""
    await asyncio.wait_for(manager.wait_for_state(state), timeout)


@pytest.fixture
def memory_store() -> MemoryStore:
    """Create an empty in-memory store."""
    return MemoryStore()


@pytest.fixture
def settings() -> Settings:
    """Create unencrypted settings for a device named Laptop."""
    return Settings(server_url="ws://relay.test:4000", device_name="Laptop")


async def wait_for_peers(relay: RelayServer, count: int, timeout: float = 2.0) -> None:
    """Wait until relay has count connected peers."""

    async def poll() -> None:
        while len(relay.connections) < count:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


def relay_url(relay: RelayServer) -> str:
    """Return the client URL of a running relay."""
    return f"ws://127.0.0.1:{relay.bound_port}"
