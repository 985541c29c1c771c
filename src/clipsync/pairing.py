#!/usr/bin/env python3
"""Pairing-code variant of the relay connection.

In pairing mode a short code both groups devices on the relay and seeds the
session key. connect(code, url) derives the key before any network activity;
if that fails the attempt ends in ERROR and nothing is retried. Once the
transport opens, the client registers with the relay and stays CONNECTING
until the relay acknowledges, at which point the session is PAIRED.

Clipboard content travels wrapped in CLIPBOARD_UPDATE frames, always
encrypted under the session key. Echo suppression compares the sender id
with this device's id.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from clipsync.client_constants import RECONNECT_DELAY
from clipsync.connection import ConnectionManager
from clipsync.connection_state import ConnectionState
from clipsync.crypto import KeyDerivationError, derive_key_async
from clipsync.envelope import (
    CLIPBOARD_UPDATE,
    DEVICE_JOINED,
    DEVICE_LEFT,
    REGISTER,
    REGISTER_ACK,
    SyncMessage,
    decode_control,
    encode_control,
    is_timestamp,
    now_ms,
)

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

logger = logging.getLogger(__name__)


def new_device_id() -> str:
    """Return a short random device id."""
    return uuid.uuid4().hex[:8]


@dataclass
class DeviceConfig:
    """Identity and session-scoped pairing configuration.

    Attributes:
        device_name: Display name of this device.
        device_id: Short id sent on registration and with every update.
        server_url: Relay URL of the current pairing.
        pairing_code: Code of the current pairing; empty when unpaired.
        shared_secret: Secret the session key was derived from, once paired.
    """

    device_name: str
    device_id: str = field(default_factory=new_device_id)
    server_url: str = ""
    pairing_code: str = ""
    shared_secret: str | None = None

    def clear_session(self) -> None:
        """Forget the pairing code and secret."""
        self.pairing_code = ""
        self.shared_secret = None


class PairingConnectionManager(ConnectionManager):
    """ConnectionManager that registers with a pairing relay.

    Attributes:
        config: Device identity and pairing configuration.
        peers: Ids of other devices currently in the pairing group.
    """

    def __init__(self, config: DeviceConfig, reconnect_delay: float = RECONNECT_DELAY) -> None:
        super().__init__(config.device_name, reconnect_delay)
        self.config = config
        self.peers: set[str] = set()
        self._code = ""
        self._key: bytes | None = None

    @property
    def local_identity(self) -> str:
        return self.config.device_id

    @property
    def session_key(self) -> bytes | None:
        return self._key

    async def connect(self, code: str, url: str) -> None:  # type: ignore[override]
        """Derive the session key from code, then start a session to url.

        Args:
            code: Pairing code shared by the devices.
            url: WebSocket URL of the pairing relay.
        """
        await self._teardown()
        self._set_state(ConnectionState.CONNECTING)
        logger.debug("Deriving session key from pairing code")
        try:
            self._key = await derive_key_async(code)
        except KeyDerivationError as e:
            logger.error("Cannot derive session key: %s", e)
            self._key = None
            self._set_state(ConnectionState.ERROR)
            return
        self._code = code
        self.url = url
        self._start_supervisor(url)

    async def disconnect(self) -> None:
        """Close the session and forget the pairing code and key."""
        await super().disconnect()
        self._code = ""
        self._key = None
        self.peers.clear()
        self.config.clear_session()

    async def _on_open(self, websocket: ClientConnection) -> None:
        logger.info("Connected to relay at %s, registering", self.url)
        self.peers.clear()
        await websocket.send(
            encode_control(REGISTER, pairingCode=self._code, id=self.config.device_id)
        )

    def _outbound_frame(self, message: SyncMessage) -> str:
        return encode_control(
            CLIPBOARD_UPDATE,
            payload=message.payload,
            iv=message.iv,
            timestamp=message.timestamp,
            senderId=self.config.device_id,
        )

    async def _handle_frame(self, websocket: ClientConnection, frame: str | bytes) -> None:
        control = decode_control(frame)
        if control is None:
            logger.debug("Ignoring non-control frame in pairing mode")
            return

        if control.type == REGISTER_ACK:
            self.config.pairing_code = self._code
            self.config.server_url = self.url or ""
            self.config.shared_secret = self._code
            self._set_state(ConnectionState.PAIRED)
            logger.info("Device paired with session")
        elif control.type == DEVICE_JOINED:
            device_id = control.get_str("deviceId")
            if device_id:
                self.peers.add(device_id)
            logger.info("Device %s joined the session", device_id)
        elif control.type == DEVICE_LEFT:
            device_id = control.get_str("deviceId")
            self.peers.discard(device_id)
            logger.info("Device %s left the session", device_id)
        elif control.type == CLIPBOARD_UPDATE:
            message = self._update_to_message(control.fields)
            if message is not None:
                self.deliver(message)

    @staticmethod
    def _update_to_message(fields: dict) -> SyncMessage | None:
        payload = fields.get("payload")
        iv = fields.get("iv")
        if not isinstance(payload, str) or (iv is not None and not isinstance(iv, str)):
            logger.warning("Dropping malformed clipboard update: %s", json.dumps(fields)[:80])
            return None
        timestamp = fields.get("timestamp")
        if not is_timestamp(timestamp):
            timestamp = now_ms()
        sender = fields.get("senderId")
        return SyncMessage(
            type="text",
            payload=payload,
            iv=iv,
            timestamp=int(timestamp),
            sender=sender if isinstance(sender, str) else None,
        )
