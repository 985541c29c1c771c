#!/usr/bin/env python3
"""Connection state for the relay session."""

from enum import Enum


class ConnectionState(str, Enum):
    """Lifecycle state of a ConnectionManager.

    PAIRED is only reached by the pairing variant, after the relay
    acknowledges registration.
    """

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    PAIRED = "PAIRED"
    ERROR = "ERROR"

    @property
    def is_ready(self) -> bool:
        """True if messages can be sent in this state."""
        return self in (ConnectionState.OPEN, ConnectionState.PAIRED)
