#!/usr/bin/env python3
"""Relay server for clipsync.

The relay is a dumb WebSocket fan-out: every frame received from one peer
is forwarded, unmodified, to every other currently connected peer. It does
not parse, authenticate, or store anything. Binary frames are forwarded as
text, since clients expect text frames.

Forwarding uses websockets' broadcast(), which writes without waiting, so
a slow or dead peer never holds up the others. Peers that are not connected
when a frame arrives simply miss it.

Usage:
    clipsync --relay [--host HOST] [--port PORT]
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import Iterable
from typing import TYPE_CHECKING

from websockets.asyncio.server import broadcast, serve
from websockets.exceptions import ConnectionClosed

from clipsync.client_constants import MAX_FRAME_SIZE

if TYPE_CHECKING:
    from websockets.asyncio.server import Server, ServerConnection

logger = logging.getLogger(__name__)

# Default listening address: all interfaces, so phones on the LAN can connect.
DEFAULT_HOST: str = "0.0.0.0"

# Default listening port.
DEFAULT_PORT: int = 4000


def relay_text(frame: str | bytes) -> str:
    """Return frame as text for forwarding.

    Binary frames are decoded as UTF-8 with invalid bytes replaced.
    """
    if isinstance(frame, str):
        return frame
    return bytes(frame).decode("utf-8", errors="replace")


class RelayServer:
    """Fan-out relay.

    Attributes:
        host: Interface to bind.
        port: Port to bind; 0 picks a free port (see bound_port).
        connections: Currently connected peers.
    """

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
        self.host = host
        self.port = port
        self.connections: set[ServerConnection] = set()
        self._server: Server | None = None

    @property
    def bound_port(self) -> int:
        """Port the server is actually listening on."""
        if self._server is None:
            raise RuntimeError("Relay is not running")
        return next(iter(self._server.sockets)).getsockname()[1]

    async def start(self) -> None:
        """Start listening."""
        self._server = await serve(
            self.handle_connection, self.host, self.port, max_size=MAX_FRAME_SIZE
        )
        logger.info("Relay listening on ws://%s:%d", self.host, self.bound_port)

    async def stop(self) -> None:
        """Close all connections and stop listening."""
        server, self._server = self._server, None
        if server is not None:
            server.close()
            await server.wait_closed()
        logger.info("Relay stopped")

    async def __aenter__(self) -> RelayServer:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def handle_connection(self, websocket: ServerConnection) -> None:
        """Serve one peer until it disconnects."""
        self.connections.add(websocket)
        logger.info("Client connected (%d connected)", len(self.connections))
        try:
            async for frame in websocket:
                self.on_frame(websocket, frame)
        except ConnectionClosed as e:
            logger.debug("Client connection closed with error: %s", e)
        finally:
            self.connections.discard(websocket)
            self.on_close(websocket)
            logger.info("Client disconnected (%d connected)", len(self.connections))

    def on_frame(self, origin: ServerConnection, frame: str | bytes) -> None:
        """Forward a frame from origin to every other peer."""
        self.forward(origin, relay_text(frame), self.connections)

    def on_close(self, websocket: ServerConnection) -> None:
        """Hook for subclasses; the plain relay keeps no per-peer state."""

    def forward(
        self,
        origin: ServerConnection | None,
        text: str,
        peers: Iterable[ServerConnection],
    ) -> int:
        """Send text to peers other than origin without waiting.

        Returns:
            Number of peers the frame was addressed to.
        """
        targets = [peer for peer in peers if peer is not origin]
        logger.debug("Forwarding %d chars to %d peers", len(text), len(targets))
        broadcast(targets, text)
        return len(targets)


async def run_relay(host: str, port: int, pairing: bool = False) -> None:
    """Run a relay until SIGINT or SIGTERM.

    Args:
        host: Interface to bind.
        port: Port to bind.
        pairing: If True, group peers by pairing code.
    """
    if pairing:
        from clipsync.pairing_relay import PairingRelayServer

        relay: RelayServer = PairingRelayServer(host, port)
    else:
        relay = RelayServer(host, port)

    shutdown_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, shutdown_requested.set)
    loop.add_signal_handler(signal.SIGTERM, shutdown_requested.set)

    async with relay:
        print(f"clipsync relay running on ws://{host}:{relay.bound_port}", file=sys.stderr)
        await shutdown_requested.wait()
