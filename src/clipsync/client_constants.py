#!/usr/bin/env python3
"""Constants for client connection and reconnect configuration.

These constants control how the client reaches the relay and how it
recovers when the connection is lost.
"""

# Relay URL used when neither the command line nor stored settings name one.
DEFAULT_SERVER_URL: str = "ws://localhost:4000"

# Fixed delay between reconnect attempts in seconds.
# Every close schedules exactly one retry; there is no backoff and no cap.
RECONNECT_DELAY: float = 3.0

# Seconds allowed for the WebSocket opening handshake.
OPEN_TIMEOUT: float = 10.0

# Maximum size of a single WebSocket frame in bytes (16 MB).
# A 5 MB file grows by a third as a data-URL and again once encrypted.
MAX_FRAME_SIZE: int = 16777216
