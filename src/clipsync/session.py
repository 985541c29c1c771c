#!/usr/bin/env python3
"""Synchronization session: the send and receive paths.

SyncSession ties the pieces together:
- send(): optionally encrypt, wrap in an envelope, hand to the connection,
  and record a "self" history entry.
- incoming(): pull decoded messages from the connection queue, decrypt them
  (or substitute a sentinel), and record them in history, one at a time and
  in arrival order.
- restore()/clear_history(): history actions.

History is persisted to the store after every change when a store is given.
A failed write is logged and the in-memory history kept.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING

from clipsync.crypto import (
    DecryptionFailure,
    EncryptedPayload,
    KeyDerivationError,
    decrypt_text_async,
    decrypt_with_key_async,
    encrypt_text_async,
    encrypt_with_key_async,
)
from clipsync.envelope import CONTENT_TYPES, UNKNOWN_SENDER, SyncMessage, now_ms
from clipsync.files import read_file_payload
from clipsync.history import HistoryCache, HistoryItem
from clipsync.settings import save_history
from clipsync.store import StoreError

if TYPE_CHECKING:
    from clipsync.connection import ConnectionManager
    from clipsync.settings import KeyValueStore, Settings

logger = logging.getLogger(__name__)

# Shown in place of encrypted content when no secret is configured.
ENCRYPTED_NO_KEY_TEXT: str = "[Encrypted content - set a secret key to read it]"

# Shown in place of content that failed to authenticate.
DECRYPTION_FAILED_TEXT: str = "[Decryption failed - wrong key]"


class SyncSession:
    """Send and receive paths for one device.

    Attributes:
        settings: Current device settings.
        manager: The relay connection.
        history: Local history cache.
        store: Optional store that history is persisted to.
    """

    def __init__(
        self,
        settings: Settings,
        manager: ConnectionManager,
        history: HistoryCache | None = None,
        store: KeyValueStore | None = None,
    ) -> None:
        self.settings = settings
        self.manager = manager
        self.history = history if history is not None else HistoryCache()
        self.store = store

    async def send(
        self,
        content: str,
        type: str = "text",
        file_name: str | None = None,
        file_type: str | None = None,
    ) -> HistoryItem | None:
        """Send content to the other devices and record it locally.

        The history entry is recorded even when the connection drops the
        message; delivery is never guaranteed.

        Args:
            content: Plaintext, or a data-URL for files.
            type: "text" or "file".
            file_name: Original file name for files.
            file_type: MIME type for files.

        Returns:
            The new history entry, or None if nothing was sent.
        """
        if type not in CONTENT_TYPES:
            raise ValueError(f"Cannot send message of type {type!r}")
        if not content and type == "text":
            return None

        payload, iv = content, None
        try:
            encrypted = await self._encrypt(content)
        except KeyDerivationError as e:
            logger.error("Encryption failed, not sending: %s", e)
            return None
        if encrypted is not None:
            payload, iv = encrypted.payload, encrypted.iv

        message = SyncMessage(
            type=type,
            payload=payload,
            iv=iv,
            sender=self.settings.device_name,
            timestamp=now_ms(),
            file_name=file_name,
            file_type=file_type,
        )
        if await self.manager.send(message):
            logger.debug("Sent %s message (%d chars)", type, len(content))

        item = HistoryItem(
            content=content,
            type=type,
            sender=self.settings.device_name,
            timestamp=message.timestamp,
            file_name=file_name,
            is_self=True,
        )
        self._record(item)
        return item

    async def send_file(self, path: str | Path) -> HistoryItem | None:
        """Send a local file as a data-URL.

        Raises:
            FileTooLargeError: If the file exceeds MAX_FILE_SIZE.
            OSError: If the file cannot be read.
        """
        file_payload = read_file_payload(path)
        return await self.send(
            file_payload.data_url,
            "file",
            file_name=file_payload.file_name,
            file_type=file_payload.file_type,
        )

    async def restore(self, item: HistoryItem) -> HistoryItem | None:
        """Resend a history item as a new entry.

        Only text items are resent; the original entry is left untouched.

        Returns:
            The new history entry, or None if item is not restorable.
        """
        if item.type != "text":
            logger.debug("Only text items can be restored")
            return None
        return await self.send(item.content, "text")

    async def clear_history(self, confirm: Callable[[], bool | Awaitable[bool]]) -> bool:
        """Clear history once confirm() agrees; returns whether it was cleared."""
        cleared = await self.history.clear(confirm)
        if cleared:
            self._persist()
        return cleared

    async def handle_incoming(self, message: SyncMessage) -> HistoryItem | None:
        """Turn an inbound message into a history entry.

        Args:
            message: A decoded message from the connection queue.

        Returns:
            The new history entry, or None for non-content messages.
        """
        if message.type not in CONTENT_TYPES:
            return None
        item = HistoryItem(
            content=await self._reveal(message),
            type="file" if message.type == "file" else "text",
            sender=message.sender or UNKNOWN_SENDER,
            timestamp=message.timestamp,
            file_name=message.file_name,
            is_self=False,
        )
        self._record(item)
        return item

    async def incoming(self) -> AsyncIterator[HistoryItem]:
        """Yield received history entries as messages arrive.

        Each message is fully processed before the next is taken from the
        queue.
        """
        while True:
            message = await self.manager.messages.get()
            item = await self.handle_incoming(message)
            if item is not None:
                yield item

    async def disconnect(self) -> None:
        """Disconnect from the relay and clear the session's history."""
        await self.manager.disconnect()
        self.history.reset()
        self._persist()

    async def shutdown(self) -> None:
        """Close the connection, keeping history for the next run."""
        await self.manager.disconnect()

    async def _encrypt(self, content: str) -> EncryptedPayload | None:
        key = self.manager.session_key
        if key is not None:
            return await encrypt_with_key_async(content, key)
        if self.settings.secret_key:
            return await encrypt_text_async(content, self.settings.secret_key)
        return None

    async def _reveal(self, message: SyncMessage) -> str:
        if not message.is_encrypted:
            return message.payload
        key = self.manager.session_key
        try:
            if key is not None:
                return await decrypt_with_key_async(message.payload, message.iv, key)
            if not self.settings.secret_key:
                return ENCRYPTED_NO_KEY_TEXT
            return await decrypt_text_async(message.payload, message.iv, self.settings.secret_key)
        except DecryptionFailure as e:
            logger.warning("Could not decrypt message from %s: %s", message.sender, e)
            return DECRYPTION_FAILED_TEXT

    def _record(self, item: HistoryItem) -> None:
        self.history.append(item)
        self._persist()

    def _persist(self) -> None:
        if self.store is None:
            return
        try:
            save_history(self.store, self.history)
        except StoreError as e:
            logger.warning("Could not save history, keeping it in memory: %s", e)
