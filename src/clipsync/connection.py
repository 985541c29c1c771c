#!/usr/bin/env python3
"""Relay connection management with automatic reconnect.

ConnectionManager owns the single WebSocket session to the relay. A
supervising task connects, receives frames until the transport closes, and
then waits a fixed reconnect delay before trying again, forever. The retry
loop is driven by tenacity; cancelling the supervisor task is the only way
to stop it, which is what disconnect() does.

Inbound frames are normalized by the envelope codec. Content messages are
put on the manager's queue for the session to consume, except echoes of
this device's own messages, which are dropped here.

State transitions:
    DISCONNECTED -> CONNECTING    connect()
    CONNECTING   -> OPEN          transport handshake succeeded
    CONNECTING   -> ERROR         transport failed to establish
    OPEN         -> DISCONNECTED  transport closed (retry scheduled)
    ERROR        -> CONNECTING    next attempt
    any          -> DISCONNECTED  disconnect() (no retry)
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import TYPE_CHECKING

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_never,
    wait_fixed,
)
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from clipsync.client_constants import MAX_FRAME_SIZE, OPEN_TIMEOUT, RECONNECT_DELAY
from clipsync.connection_state import ConnectionState
from clipsync.envelope import (
    CONTENT_TYPES,
    Decoded,
    Dropped,
    SyncMessage,
    decode_frame,
    encode_message,
    now_ms,
)

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

logger = logging.getLogger(__name__)


class TransportError(ConnectionError):
    """
    Exception raised when the relay transport fails.

    Raised when the connection cannot be established and when an open
    connection closes. Either way the supervisor schedules a retry.
    """

    pass


async def connect_to_relay(url: str) -> ClientConnection:
    """Open a WebSocket connection to the relay.

    Args:
        url: WebSocket URL of the relay (ws:// or wss://).

    Returns:
        The open client connection.

    Raises:
        TransportError: If the URL is invalid or the handshake fails.
    """
    try:
        return await connect(url, open_timeout=OPEN_TIMEOUT, max_size=MAX_FRAME_SIZE)
    except (OSError, asyncio.TimeoutError, WebSocketException) as e:
        raise TransportError(f"Failed to connect to {url}: {e}") from e


class ConnectionManager:
    """Single logical session to the relay.

    Attributes:
        device_name: Local device name; inbound messages from this sender
            are treated as echoes.
        reconnect_delay: Seconds between a close and the next attempt.
        state: Current ConnectionState.
        url: URL of the current or last session.
        attempts: Number of connection attempts made so far.
        messages: Queue of decoded inbound content messages.
    """

    def __init__(self, device_name: str, reconnect_delay: float = RECONNECT_DELAY) -> None:
        self.device_name = device_name
        self.reconnect_delay = reconnect_delay
        self.state = ConnectionState.DISCONNECTED
        self.url: str | None = None
        self.attempts = 0
        self.messages: asyncio.Queue[SyncMessage] = asyncio.Queue()
        self._websocket: ClientConnection | None = None
        self._supervisor: asyncio.Task[None] | None = None
        self._stopping = False
        self._state_events = {state: asyncio.Event() for state in ConnectionState}
        self._state_events[self.state].set()

    @property
    def local_identity(self) -> str:
        """Identity compared against inbound senders for echo suppression."""
        return self.device_name

    @property
    def session_key(self) -> bytes | None:
        """Key derived for this session, if the variant derives one."""
        return None

    @property
    def is_ready(self) -> bool:
        """True if send() will hand messages to the transport."""
        return self.state.is_ready and self._websocket is not None

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        logger.debug("Connection state %s -> %s", self.state.value, state.value)
        self._state_events[self.state].clear()
        self.state = state
        self._state_events[state].set()

    async def wait_for_state(self, state: ConnectionState) -> None:
        """Wait until the manager enters state (returns at once if already there)."""
        await self._state_events[state].wait()

    async def connect(self, url: str) -> None:
        """Start a session to url, replacing any existing one.

        Returns once the supervisor task is started; use wait_for_state()
        to wait for the handshake.

        Args:
            url: WebSocket URL of the relay.
        """
        await self._teardown()
        self.url = url
        self._start_supervisor(url)

    async def disconnect(self) -> None:
        """Close the session and cancel any pending reconnect."""
        await self._teardown()
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Disconnected manually")

    async def send(self, message: SyncMessage) -> bool:
        """Send a message if the session is ready.

        Messages sent while not ready are dropped, not queued.

        Args:
            message: The envelope to send.

        Returns:
            True if the frame was handed to the transport.
        """
        websocket = self._websocket
        if not self.state.is_ready or websocket is None:
            logger.debug("Not connected, dropping outgoing %s message", message.type)
            return False
        try:
            await websocket.send(self._outbound_frame(message))
        except ConnectionClosed as e:
            logger.warning("Send failed, connection closed: %s", e)
            return False
        return True

    def _outbound_frame(self, message: SyncMessage) -> str:
        return encode_message(message)

    def _start_supervisor(self, url: str) -> None:
        self._supervisor = asyncio.create_task(self._supervise(url))

    async def _teardown(self) -> None:
        """Cancel the supervisor and close the transport, if any."""
        self._stopping = True
        supervisor, self._supervisor = self._supervisor, None
        if supervisor is not None and not supervisor.done():
            supervisor.cancel()
            with suppress(asyncio.CancelledError):
                await supervisor
        websocket, self._websocket = self._websocket, None
        if websocket is not None:
            await websocket.close()
        self._stopping = False

    async def _supervise(self, url: str) -> None:
        """Run sessions to url until cancelled, waiting between attempts."""
        retrying = AsyncRetrying(
            wait=wait_fixed(self.reconnect_delay),
            retry=retry_if_exception_type(ConnectionError),
            stop=stop_never,
            before_sleep=before_sleep_log(logger, logging.INFO),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._run_session(url)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Connection supervisor stopped unexpectedly")
            self._set_state(ConnectionState.ERROR)

    async def _run_session(self, url: str) -> None:
        """Make one connection attempt and receive until the transport closes.

        Raises:
            TransportError: Always, once the session ends, so that a retry is
                scheduled.
        """
        self.attempts += 1
        self._set_state(ConnectionState.CONNECTING)
        logger.debug("Connecting to relay at %s (attempt %d)", url, self.attempts)
        try:
            websocket = await connect_to_relay(url)
        except TransportError as e:
            self._set_state(ConnectionState.ERROR)
            logger.warning("%s, will retry", e)
            raise

        self._websocket = websocket
        try:
            await self._on_open(websocket)
            async for frame in websocket:
                await self._handle_frame(websocket, frame)
        except ConnectionClosed as e:
            logger.debug("Connection closed with error: %s", e)
        finally:
            if self._websocket is websocket:
                self._websocket = None
            await websocket.close()
            self._on_closed()
        raise TransportError(f"Connection to {url} closed")

    async def _on_open(self, websocket: ClientConnection) -> None:
        logger.info("Connected to relay at %s", self.url)
        self._set_state(ConnectionState.OPEN)

    def _on_closed(self) -> None:
        if not self._stopping:
            logger.warning("Connection to relay lost")
        self._set_state(ConnectionState.DISCONNECTED)

    async def _handle_frame(self, websocket: ClientConnection, frame: str | bytes) -> None:
        """Decode one inbound frame and queue it if it carries content."""
        result = decode_frame(frame)
        if isinstance(result, Dropped):
            return
        message = result.message
        if not isinstance(result, Decoded):
            logger.debug("Wrapped plain-text frame as text message")

        if message.type == "ping":
            pong = SyncMessage(type="pong", payload="", timestamp=now_ms(), sender=self.device_name)
            with suppress(ConnectionClosed):
                await websocket.send(encode_message(pong))
            return
        if message.type not in CONTENT_TYPES:
            return
        self.deliver(message)

    def deliver(self, message: SyncMessage) -> bool:
        """Queue an inbound content message unless it is an echo.

        Args:
            message: Decoded inbound message.

        Returns:
            True if the message was queued.
        """
        if message.sender is not None and message.sender == self.local_identity:
            logger.debug("Ignoring echo of our own message")
            return False
        self.messages.put_nowait(message)
        return True
