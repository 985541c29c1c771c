#!/usr/bin/env python3
"""Device settings and their persistence.

Settings and history are stored as JSON text under well-known keys in a
key-value store (see store.py). They are read once at startup and written
back on every change.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Protocol

from clipsync.client_constants import DEFAULT_SERVER_URL
from clipsync.history import HistoryCache

logger = logging.getLogger(__name__)

SETTINGS_KEY: str = "clipsync_settings"
HISTORY_KEY: str = "clipsync_history"

# Attribute name to persisted key.
_SETTINGS_FIELDS: dict[str, str] = {
    "server_url": "serverUrl",
    "device_name": "deviceName",
    "secret_key": "secretKey",
    "enable_notifications": "enableNotifications",
    "enable_sound": "enableSound",
}


class KeyValueStore(Protocol):
    """Minimal interface the core needs from persisted storage."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


def default_device_name() -> str:
    """Return a generated display name for a new device."""
    return f"Web-Client-{random.randrange(1000)}"


@dataclass(frozen=True)
class Settings:
    """User-facing device settings.

    Attributes:
        server_url: WebSocket URL of the relay.
        device_name: Display name sent with every message; also used for
            echo suppression.
        secret_key: Shared secret; empty means payloads travel in clear text.
        enable_notifications: Whether the shell shows notifications.
        enable_sound: Whether the shell plays a sound on receipt.
    """

    server_url: str = DEFAULT_SERVER_URL
    device_name: str = field(default_factory=default_device_name)
    secret_key: str = ""
    enable_notifications: bool = True
    enable_sound: bool = True

    @property
    def encrypted(self) -> bool:
        """True if outgoing payloads are encrypted."""
        return bool(self.secret_key)

    def to_record(self) -> dict[str, Any]:
        """Return the persisted form using camelCase keys."""
        return {key: getattr(self, attr) for attr, key in _SETTINGS_FIELDS.items()}

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Settings:
        """Overlay a persisted record on the defaults.

        Unknown keys are ignored, as are values whose type does not match the
        default's type.
        """
        defaults = cls()
        values = {}
        for attr, key in _SETTINGS_FIELDS.items():
            if key not in record:
                continue
            value = record[key]
            if type(value) is not type(getattr(defaults, attr)):
                logger.warning("Ignoring stored setting %s with unexpected type", key)
                continue
            values[attr] = value
        return dataclasses.replace(defaults, **values)


def load_settings(store: KeyValueStore) -> Settings:
    """Load settings from store, falling back to defaults."""
    raw = store.get(SETTINGS_KEY)
    if raw is None:
        return Settings()
    try:
        record = json.loads(raw)
    except (ValueError, RecursionError) as e:
        logger.warning("Stored settings are not valid JSON, using defaults: %s", e)
        return Settings()
    if not isinstance(record, dict):
        logger.warning("Stored settings are not an object, using defaults")
        return Settings()
    return Settings.from_record(record)


def save_settings(store: KeyValueStore, settings: Settings) -> None:
    """Persist settings to store."""
    store.set(SETTINGS_KEY, json.dumps(settings.to_record()))


def update_settings(store: KeyValueStore, settings: Settings, **changes: Any) -> Settings:
    """Apply changes, persist the result, and return it.

    Args:
        store: Store to persist to.
        settings: Current settings.
        **changes: Settings attributes to change.

    Returns:
        The updated Settings.
    """
    updated = dataclasses.replace(settings, **changes)
    if updated != settings:
        save_settings(store, updated)
    return updated


def load_history(store: KeyValueStore) -> HistoryCache:
    """Load the persisted history, or an empty cache."""
    raw = store.get(HISTORY_KEY)
    if raw is None:
        return HistoryCache()
    try:
        records = json.loads(raw)
    except (ValueError, RecursionError) as e:
        logger.warning("Stored history is not valid JSON, starting empty: %s", e)
        return HistoryCache()
    if not isinstance(records, list):
        logger.warning("Stored history is not a list, starting empty")
        return HistoryCache()
    return HistoryCache.from_records(records)


def save_history(store: KeyValueStore, history: HistoryCache) -> None:
    """Persist history to store."""
    store.set(HISTORY_KEY, json.dumps(history.to_records()))
