#!/usr/bin/env python3
"""
Message envelope codec.

Every frame on the wire is expected to be a JSON object shaped like a
SyncMessage, but peers are not required to speak the protocol: a bare
client may send plain text. decode_frame() normalizes whatever arrives
into one of three results:

- Decoded: the frame was a well-formed SyncMessage.
- FallbackText: the frame was text that is not a SyncMessage; it is
  treated as a text message from an unknown sender.
- Dropped: the frame could not be turned into text at all.

Decoding never raises. Pairing-mode control frames (REGISTER_ACK,
DEVICE_JOINED, ...) are parsed separately by decode_control().
"""
from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

# Envelope types carried on the wire.
MESSAGE_TYPES: frozenset[str] = frozenset({"text", "file", "ping", "pong"})

# Envelope types that carry user content and end up in history.
CONTENT_TYPES: frozenset[str] = frozenset({"text", "file"})

# Sender recorded for frames that do not name one.
UNKNOWN_SENDER: str = "Unknown"

# Optional string fields and their wire names.
_OPTIONAL_FIELDS: tuple[tuple[str, str], ...] = (
    ("iv", "iv"),
    ("sender", "sender"),
    ("file_name", "fileName"),
    ("file_type", "fileType"),
)


class DecodeError(ValueError):
    """
    Exception raised when a frame cannot be interpreted as text.

    Only binary frames that are not valid UTF-8 hit this; any text at all
    is usable through the plain-text fallback.
    """

    pass


def now_ms() -> int:
    """Return the current time in epoch milliseconds."""
    return int(time.time() * 1000)


def is_timestamp(value: Any) -> bool:
    """Return True if value is a finite JSON number usable as a timestamp."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


@dataclass(frozen=True)
class SyncMessage:
    """
    Canonical wire envelope.

    Attributes:
        type: One of MESSAGE_TYPES.
        payload: Plaintext, or base64 ciphertext when iv is set.
        timestamp: Sender-assigned epoch milliseconds.
        iv: base64 nonce; present if and only if payload is encrypted.
        sender: Display name of the sending device.
        file_name: Original file name, file messages only.
        file_type: MIME type, file messages only.
    """

    type: str
    payload: str
    timestamp: int
    iv: str | None = None
    sender: str | None = None
    file_name: str | None = None
    file_type: str | None = None

    @property
    def is_encrypted(self) -> bool:
        """True if the payload was produced by the crypto layer."""
        return self.iv is not None

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON-ready dict using wire field names, omitting unset fields."""
        wire: dict[str, Any] = {
            "type": self.type,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }
        for attr, name in _OPTIONAL_FIELDS:
            value = getattr(self, attr)
            if value is not None:
                wire[name] = value
        return wire

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> SyncMessage:
        """
        Build a SyncMessage from a parsed JSON object.

        Args:
            data: Parsed JSON object.

        Returns:
            The corresponding SyncMessage.

        Raises:
            ValueError: If a required field is missing or a field has the
                wrong type.
        """
        msg_type = data.get("type")
        if msg_type not in MESSAGE_TYPES:
            raise ValueError(f"Unknown message type: {msg_type!r}")
        timestamp = data.get("timestamp")
        if not is_timestamp(timestamp):
            raise ValueError(f"Invalid timestamp: {timestamp!r}")
        payload = data.get("payload", "")
        if not isinstance(payload, str):
            raise ValueError("Payload must be a string")
        optional: dict[str, str | None] = {}
        for attr, name in _OPTIONAL_FIELDS:
            value = data.get(name)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"Field {name} must be a string")
            optional[attr] = value
        return cls(type=msg_type, payload=payload, timestamp=int(timestamp), **optional)


@dataclass(frozen=True)
class Decoded:
    """A frame that was a well-formed SyncMessage."""

    message: SyncMessage


@dataclass(frozen=True)
class FallbackText:
    """A text frame that was not a SyncMessage."""

    text: str
    timestamp: int = field(default_factory=now_ms)

    @property
    def message(self) -> SyncMessage:
        """The frame wrapped as a plain text message from an unknown sender."""
        return SyncMessage(
            type="text",
            payload=self.text,
            timestamp=self.timestamp,
            sender=UNKNOWN_SENDER,
        )


@dataclass(frozen=True)
class Dropped:
    """A frame that could not be used."""

    reason: str


DecodeResult = Decoded | FallbackText | Dropped


def frame_text(frame: str | bytes) -> str:
    """
    Return the text content of a transport frame.

    Args:
        frame: A text frame (str) or binary frame (bytes).

    Returns:
        The frame as text.

    Raises:
        DecodeError: If a binary frame is not valid UTF-8.
    """
    if isinstance(frame, str):
        return frame
    try:
        return bytes(frame).decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError(f"Binary frame is not valid UTF-8: {e}") from e


def decode_frame(frame: str | bytes, now: int | None = None) -> DecodeResult:
    """
    Normalize a raw transport frame into a decode result.

    Args:
        frame: The raw frame as received.
        now: Timestamp to stamp fallback messages with; defaults to now_ms().

    Returns:
        Decoded, FallbackText or Dropped. Never raises.
    """
    try:
        text = frame_text(frame)
    except DecodeError as e:
        logger.warning("Dropping frame: %s", e)
        return Dropped(str(e))

    timestamp = now_ms() if now is None else now
    try:
        data = json.loads(text)
    except (ValueError, RecursionError):
        logger.debug("Non-JSON frame received, treating as plain text")
        return FallbackText(text, timestamp)

    if not isinstance(data, dict):
        return FallbackText(text, timestamp)
    try:
        return Decoded(SyncMessage.from_wire(data))
    except ValueError as e:
        logger.debug("Frame does not match envelope shape (%s), treating as plain text", e)
        return FallbackText(text, timestamp)


def encode_message(message: SyncMessage) -> str:
    """
    Serialize a SyncMessage to compact JSON text.

    Args:
        message: The message to encode.

    Returns:
        JSON text suitable for a WebSocket text frame.
    """
    return json.dumps(message.to_wire(), separators=(",", ":"))


# Control frame types used by the pairing relay.
REGISTER: str = "REGISTER"
REGISTER_ACK: str = "REGISTER_ACK"
DEVICE_JOINED: str = "DEVICE_JOINED"
DEVICE_LEFT: str = "DEVICE_LEFT"
CLIPBOARD_UPDATE: str = "CLIPBOARD_UPDATE"

CONTROL_TYPES: frozenset[str] = frozenset(
    {REGISTER, REGISTER_ACK, DEVICE_JOINED, DEVICE_LEFT, CLIPBOARD_UPDATE}
)


@dataclass(frozen=True)
class ControlMessage:
    """
    Pairing-mode control frame.

    Attributes:
        type: One of CONTROL_TYPES.
        fields: The remaining JSON fields.
    """

    type: str
    fields: dict[str, Any] = field(default_factory=dict)

    def get_str(self, name: str) -> str | None:
        """Return fields[name] if it is a string, else None."""
        value = self.fields.get(name)
        return value if isinstance(value, str) else None


def decode_control(frame: str | bytes) -> ControlMessage | None:
    """
    Parse a pairing-mode control frame.

    Args:
        frame: The raw frame as received.

    Returns:
        The ControlMessage, or None if the frame is not a control frame.
    """
    try:
        data = json.loads(frame_text(frame))
    except (ValueError, RecursionError):
        return None
    if not isinstance(data, dict) or data.get("type") not in CONTROL_TYPES:
        return None
    fields = {k: v for k, v in data.items() if k != "type"}
    return ControlMessage(type=data["type"], fields=fields)


def encode_control(msg_type: str, **fields: Any) -> str:
    """Serialize a control frame, omitting None-valued fields."""
    data = {"type": msg_type}
    data.update({k: v for k, v in fields.items() if v is not None})
    return json.dumps(data, separators=(",", ":"))
