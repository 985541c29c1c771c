#!/usr/bin/env python3
"""Relay variant that groups peers by pairing code.

A peer must first send REGISTER{pairingCode, id}. The relay answers with
REGISTER_ACK and tells the rest of the group DEVICE_JOINED{deviceId}.
After that, every frame from the peer is forwarded unmodified to the other
members of its group only. When the peer disconnects the group receives
DEVICE_LEFT{deviceId}. Frames from peers that have not registered are
dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from clipsync.envelope import (
    DEVICE_JOINED,
    DEVICE_LEFT,
    REGISTER,
    REGISTER_ACK,
    decode_control,
    encode_control,
)
from clipsync.relay import DEFAULT_HOST, DEFAULT_PORT, RelayServer, relay_text

if TYPE_CHECKING:
    from websockets.asyncio.server import ServerConnection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Registration:
    """A registered peer's pairing code and device id."""

    pairing_code: str
    device_id: str


class PairingRelayServer(RelayServer):
    """Relay that only forwards within pairing groups.

    Attributes:
        groups: Connected peers per pairing code.
        registrations: Registration of each registered peer.
    """

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
        super().__init__(host, port)
        self.groups: dict[str, set[ServerConnection]] = {}
        self.registrations: dict[ServerConnection, Registration] = {}

    def on_frame(self, origin: ServerConnection, frame: str | bytes) -> None:
        registration = self.registrations.get(origin)
        if registration is None:
            self._register(origin, frame)
            return
        self.forward(origin, relay_text(frame), self.groups.get(registration.pairing_code, ()))

    def on_close(self, websocket: ServerConnection) -> None:
        registration = self.registrations.pop(websocket, None)
        if registration is None:
            return
        group = self.groups.get(registration.pairing_code)
        if group is None:
            return
        group.discard(websocket)
        if group:
            self.forward(websocket, encode_control(DEVICE_LEFT, deviceId=registration.device_id), group)
        else:
            del self.groups[registration.pairing_code]
        logger.info("Device %s left pairing group", registration.device_id)

    def _register(self, websocket: ServerConnection, frame: str | bytes) -> None:
        control = decode_control(frame)
        if control is None or control.type != REGISTER:
            logger.warning("Dropping frame from unregistered peer")
            return
        code = control.get_str("pairingCode")
        device_id = control.get_str("id")
        if not code or not device_id:
            logger.warning("Dropping REGISTER without pairing code or id")
            return

        registration = Registration(pairing_code=code, device_id=device_id)
        self.registrations[websocket] = registration
        group = self.groups.setdefault(code, set())
        group.add(websocket)
        self.forward(None, encode_control(REGISTER_ACK, pairingCode=code), [websocket])
        self.forward(websocket, encode_control(DEVICE_JOINED, deviceId=device_id), group)
        logger.info("Device %s joined pairing group (%d devices)", device_id, len(group))
