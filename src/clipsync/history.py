#!/usr/bin/env python3
"""
Bounded history of synchronized items.

The cache keeps the most recent HISTORY_LIMIT items, newest first. It is a
plain bounded queue: appending past capacity drops the oldest item, and
reading an item never changes its position. Items are immutable; resending
one creates a new entry instead of touching the old one.

Clearing is destructive and only happens after the caller confirms.
"""
from __future__ import annotations

import inspect
import logging
import uuid
from collections import deque
from collections.abc import Awaitable, Callable, Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from clipsync.envelope import is_timestamp

logger = logging.getLogger(__name__)

# Maximum number of items kept locally.
HISTORY_LIMIT: int = 50

HISTORY_TYPES: frozenset[str] = frozenset({"text", "file"})


def new_item_id() -> str:
    """Return a fresh unique history item id."""
    return uuid.uuid4().hex


@dataclass(frozen=True)
class HistoryItem:
    """
    One sent or received item.

    Attributes:
        content: Plaintext content; for files, a data-URL.
        type: "text" or "file".
        sender: Display name of the originating device.
        timestamp: Epoch milliseconds.
        is_self: True if this device sent the item.
        file_name: Original file name, file items only.
        id: Unique item id.
    """

    content: str
    type: str
    sender: str
    timestamp: int
    is_self: bool
    file_name: str | None = None
    id: str = field(default_factory=new_item_id)

    def to_record(self) -> dict[str, Any]:
        """Return the persisted form using camelCase keys."""
        record: dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "type": self.type,
            "sender": self.sender,
            "timestamp": self.timestamp,
            "isSelf": self.is_self,
        }
        if self.file_name is not None:
            record["fileName"] = self.file_name
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> HistoryItem:
        """
        Rebuild an item from its persisted form.

        Raises:
            ValueError: If the record is missing fields or has bad types.
        """
        if not isinstance(record, dict):
            raise ValueError("History record must be an object")
        try:
            item_id = record["id"]
            content = record["content"]
            item_type = record["type"]
            sender = record["sender"]
            timestamp = record["timestamp"]
        except KeyError as e:
            raise ValueError(f"History record missing field {e}") from e
        if item_type not in HISTORY_TYPES:
            raise ValueError(f"Unknown history item type: {item_type!r}")
        if not all(isinstance(v, str) for v in (item_id, content, sender)):
            raise ValueError("History record id, content and sender must be strings")
        if not is_timestamp(timestamp):
            raise ValueError(f"Invalid timestamp: {timestamp!r}")
        file_name = record.get("fileName")
        if file_name is not None and not isinstance(file_name, str):
            raise ValueError("fileName must be a string")
        return cls(
            id=item_id,
            content=content,
            type=item_type,
            sender=sender,
            timestamp=int(timestamp),
            is_self=bool(record.get("isSelf", False)),
            file_name=file_name,
        )


class HistoryCache:
    """
    Newest-first bounded list of HistoryItem.

    Backed by a deque with maxlen, so appends are O(1) and the oldest item
    falls off the far end once the limit is exceeded.
    """

    def __init__(self, items: Iterable[HistoryItem] = (), limit: int = HISTORY_LIMIT) -> None:
        """
        Args:
            items: Initial items, newest first. Only the first limit are kept.
            limit: Maximum number of items.
        """
        if limit < 1:
            raise ValueError("History limit must be positive")
        self._items: deque[HistoryItem] = deque(maxlen=limit)
        for item in items:
            if len(self._items) == limit:
                break
            self._items.append(item)

    @property
    def limit(self) -> int:
        """Maximum number of items kept."""
        return self._items.maxlen or 0

    def append(self, item: HistoryItem) -> None:
        """Add item as the newest entry, evicting the oldest if full."""
        self._items.appendleft(item)

    def items(self) -> list[HistoryItem]:
        """Return a snapshot of the items, newest first."""
        return list(self._items)

    def get(self, index: int) -> HistoryItem:
        """Return the item at index (0 is newest)."""
        return self._items[index]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[HistoryItem]:
        return iter(list(self._items))

    async def clear(self, confirm: Callable[[], bool | Awaitable[bool]]) -> bool:
        """
        Remove all items once confirm() answers yes.

        Args:
            confirm: Called once; may return a bool or an awaitable bool.

        Returns:
            True if the history was cleared.
        """
        answer = confirm()
        if inspect.isawaitable(answer):
            answer = await answer
        if not answer:
            logger.debug("History clear declined")
            return False
        self.reset()
        return True

    def reset(self) -> None:
        """Remove all items without asking. Used on session teardown."""
        self._items.clear()
        logger.debug("History cleared")

    def to_records(self) -> list[dict[str, Any]]:
        """Return the persisted form of all items, newest first."""
        return [item.to_record() for item in self._items]

    @classmethod
    def from_records(cls, records: Iterable[Any], limit: int = HISTORY_LIMIT) -> HistoryCache:
        """
        Rebuild a cache from persisted records, skipping malformed ones.

        Args:
            records: Persisted records, newest first.
            limit: Maximum number of items to keep.
        """
        items = []
        for record in records:
            try:
                items.append(HistoryItem.from_record(record))
            except ValueError as e:
                logger.warning("Skipping malformed history record: %s", e)
        return cls(items, limit=limit)
