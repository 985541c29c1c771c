#!/usr/bin/env python3
"""Tests for the session send and receive paths."""
import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from clipsync.connection import ConnectionManager
from clipsync.crypto import decrypt_text, derive_key, encrypt_text, encrypt_with_key
from clipsync.envelope import SyncMessage
from clipsync.files import from_data_url
from clipsync.history import HistoryItem
from clipsync.session import DECRYPTION_FAILED_TEXT, ENCRYPTED_NO_KEY_TEXT, SyncSession
from clipsync.settings import HISTORY_KEY, Settings
from clipsync.store import StoreError


@pytest.fixture
def mock_manager() -> MagicMock:
    """Create a ConnectionManager stand-in that accepts every send."""
    manager = MagicMock(spec=ConnectionManager)
    manager.send = AsyncMock(return_value=True)
    manager.disconnect = AsyncMock()
    manager.session_key = None
    manager.messages = asyncio.Queue()
    return manager


def sent_message(manager: MagicMock) -> SyncMessage:
    """Return the SyncMessage passed to the last send()."""
    return manager.send.await_args.args[0]


@pytest.mark.asyncio
async def test_send_plaintext(settings: Settings, mock_manager: MagicMock) -> None:
    """Test sending without a secret puts plaintext on the wire."""
    session = SyncSession(settings, mock_manager)
    item = await session.send("hello")

    message = sent_message(mock_manager)
    assert (message.type, message.payload, message.iv, message.sender) == ("text", "hello", None, "Laptop")
    assert item.is_self is True
    assert item.content == "hello"
    assert item.timestamp == message.timestamp
    assert session.history.get(0) is item


@pytest.mark.asyncio
async def test_send_encrypts_with_secret(mock_manager: MagicMock) -> None:
    """Test a configured secret encrypts the payload and sets iv."""
    session = SyncSession(Settings(device_name="Laptop", secret_key="x"), mock_manager)
    item = await session.send("secret text")

    message = sent_message(mock_manager)
    assert message.iv is not None
    assert message.payload != "secret text"
    assert decrypt_text(message.payload, message.iv, "x") == "secret text"
    assert item.content == "secret text"


@pytest.mark.asyncio
async def test_send_uses_session_key_when_present(settings: Settings, mock_manager: MagicMock) -> None:
    """Test a pairing session key takes precedence over settings."""
    mock_manager.session_key = derive_key("1234")
    session = SyncSession(settings, mock_manager)
    await session.send("paired text")
    message = sent_message(mock_manager)
    assert decrypt_text(message.payload, message.iv, "1234") == "paired text"


@pytest.mark.asyncio
async def test_send_empty_text_is_ignored(settings: Settings, mock_manager: MagicMock) -> None:
    """Test empty text is neither sent nor recorded."""
    session = SyncSession(settings, mock_manager)
    assert await session.send("") is None
    mock_manager.send.assert_not_awaited()
    assert len(session.history) == 0


@pytest.mark.asyncio
async def test_send_rejects_control_types(settings: Settings, mock_manager: MagicMock) -> None:
    """Test only text and file can be sent as content."""
    session = SyncSession(settings, mock_manager)
    with pytest.raises(ValueError):
        await session.send("x", "ping")


@pytest.mark.asyncio
async def test_send_recorded_even_when_dropped(settings: Settings, mock_manager: MagicMock) -> None:
    """Test the self entry is recorded even when the connection drops it."""
    mock_manager.send.return_value = False
    session = SyncSession(settings, mock_manager)
    assert await session.send("offline") is not None
    assert len(session.history) == 1


@pytest.mark.asyncio
async def test_send_file(settings: Settings, mock_manager: MagicMock, tmp_path: Path) -> None:
    """Test files are sent as data-URLs with name and type."""
    path = tmp_path / "photo.png"
    path.write_bytes(b"\x89PNG")
    session = SyncSession(settings, mock_manager)
    item = await session.send_file(path)

    message = sent_message(mock_manager)
    assert message.type == "file"
    assert message.file_name == "photo.png"
    assert message.file_type == "image/png"
    assert from_data_url(message.payload) == b"\x89PNG"
    assert item.type == "file"
    assert item.file_name == "photo.png"


@pytest.mark.asyncio
async def test_receive_plaintext(settings: Settings, mock_manager: MagicMock) -> None:
    """Test an unencrypted message is recorded as-is."""
    session = SyncSession(settings, mock_manager)
    message = SyncMessage(type="text", payload="hi", sender="Phone", timestamp=42)
    item = await session.handle_incoming(message)
    assert (item.content, item.sender, item.timestamp, item.is_self) == ("hi", "Phone", 42, False)
    assert session.history.get(0) is item


@pytest.mark.asyncio
async def test_receive_without_sender_records_unknown(settings: Settings, mock_manager: MagicMock) -> None:
    """Test a message without a sender is attributed to Unknown."""
    session = SyncSession(settings, mock_manager)
    item = await session.handle_incoming(SyncMessage(type="text", payload="hi", timestamp=1))
    assert item.sender == "Unknown"


@pytest.mark.asyncio
async def test_receive_decrypts_with_matching_secret(mock_manager: MagicMock) -> None:
    """Test an encrypted message is decrypted with the shared secret."""
    encrypted = encrypt_text("hi", "x")
    session = SyncSession(Settings(device_name="B", secret_key="x"), mock_manager)
    message = SyncMessage(type="text", payload=encrypted.payload, iv=encrypted.iv, sender="A", timestamp=1)
    item = await session.handle_incoming(message)
    assert item.content == "hi"


@pytest.mark.asyncio
async def test_receive_wrong_secret_shows_sentinel(
    mock_manager: MagicMock, caplog: pytest.LogCaptureFixture
) -> None:
    """Test a wrong secret yields the failure sentinel, not an exception."""
    encrypted = encrypt_text("hi", "x")
    session = SyncSession(Settings(device_name="C", secret_key="y"), mock_manager)
    message = SyncMessage(type="text", payload=encrypted.payload, iv=encrypted.iv, sender="A", timestamp=1)
    item = await session.handle_incoming(message)
    assert item.content == DECRYPTION_FAILED_TEXT
    assert "Could not decrypt" in caplog.text


@pytest.mark.asyncio
async def test_receive_encrypted_without_secret_shows_sentinel(
    settings: Settings, mock_manager: MagicMock
) -> None:
    """Test encrypted content without a configured secret asks for one."""
    encrypted = encrypt_text("hi", "x")
    session = SyncSession(settings, mock_manager)
    message = SyncMessage(type="text", payload=encrypted.payload, iv=encrypted.iv, sender="A", timestamp=1)
    item = await session.handle_incoming(message)
    assert item.content == ENCRYPTED_NO_KEY_TEXT


@pytest.mark.asyncio
async def test_receive_decrypts_with_session_key(settings: Settings, mock_manager: MagicMock) -> None:
    """Test pairing sessions decrypt with the derived session key."""
    key = derive_key("1234")
    mock_manager.session_key = key
    encrypted = encrypt_with_key("paired", key)
    session = SyncSession(settings, mock_manager)
    message = SyncMessage(type="text", payload=encrypted.payload, iv=encrypted.iv, sender="p", timestamp=1)
    assert (await session.handle_incoming(message)).content == "paired"


@pytest.mark.asyncio
async def test_receive_file_keeps_file_name(settings: Settings, mock_manager: MagicMock) -> None:
    """Test received files keep their name and type."""
    session = SyncSession(settings, mock_manager)
    message = SyncMessage(type="file", payload="data:,x", sender="A", timestamp=1, file_name="a.txt")
    item = await session.handle_incoming(message)
    assert (item.type, item.file_name, item.content) == ("file", "a.txt", "data:,x")


@pytest.mark.asyncio
async def test_receive_ignores_control_types(settings: Settings, mock_manager: MagicMock) -> None:
    """Test ping/pong never become history entries."""
    session = SyncSession(settings, mock_manager)
    assert await session.handle_incoming(SyncMessage(type="pong", payload="", timestamp=1)) is None
    assert len(session.history) == 0


@pytest.mark.asyncio
async def test_incoming_processes_queue_in_order(settings: Settings, mock_manager: MagicMock) -> None:
    """Test incoming() yields entries in arrival order."""
    session = SyncSession(settings, mock_manager)
    for n in range(3):
        mock_manager.messages.put_nowait(SyncMessage(type="text", payload=str(n), sender="A", timestamp=n))
    stream = session.incoming()
    received = [await asyncio.wait_for(anext(stream), 1) for _ in range(3)]
    await stream.aclose()
    assert [item.content for item in received] == ["0", "1", "2"]
    assert [item.content for item in session.history] == ["2", "1", "0"]


@pytest.mark.asyncio
async def test_restore_creates_new_self_entry(settings: Settings, mock_manager: MagicMock) -> None:
    """Test restoring resends content without touching the original entry."""
    session = SyncSession(settings, mock_manager)
    original = await session.handle_incoming(SyncMessage(type="text", payload="old", sender="A", timestamp=1))
    restored = await session.restore(original)
    assert restored is not None
    assert restored.id != original.id
    assert restored.is_self is True
    assert restored.content == "old"
    assert session.history.items() == [restored, original]
    assert sent_message(mock_manager).payload == "old"


@pytest.mark.asyncio
async def test_restore_skips_files(settings: Settings, mock_manager: MagicMock) -> None:
    """Test file items are not resent."""
    session = SyncSession(settings, mock_manager)
    item = HistoryItem(content="data:,x", type="file", sender="A", timestamp=1, is_self=False)
    assert await session.restore(item) is None
    mock_manager.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_history_persisted_on_change(settings: Settings, mock_manager: MagicMock, memory_store) -> None:
    """Test every history change is written to the store."""
    session = SyncSession(settings, mock_manager, store=memory_store)
    await session.send("one")
    assert [r["content"] for r in json.loads(memory_store.get(HISTORY_KEY))] == ["one"]
    await session.clear_history(lambda: True)
    assert json.loads(memory_store.get(HISTORY_KEY)) == []


@pytest.mark.asyncio
async def test_clear_history_declined_keeps_items(settings: Settings, mock_manager: MagicMock) -> None:
    """Test declining the confirmation keeps history."""
    session = SyncSession(settings, mock_manager)
    await session.send("keep me")
    assert await session.clear_history(lambda: False) is False
    assert len(session.history) == 1


@pytest.mark.asyncio
async def test_disconnect_clears_history(settings: Settings, mock_manager: MagicMock) -> None:
    """Test manual disconnect tears down the connection and clears history."""
    session = SyncSession(settings, mock_manager)
    await session.send("bye")
    await session.disconnect()
    mock_manager.disconnect.assert_awaited_once()
    assert len(session.history) == 0


@pytest.mark.asyncio
async def test_shutdown_keeps_history(settings: Settings, mock_manager: MagicMock) -> None:
    """Test shutdown closes the connection but keeps history."""
    session = SyncSession(settings, mock_manager)
    await session.send("stay")
    await session.shutdown()
    mock_manager.disconnect.assert_awaited_once()
    assert len(session.history) == 1


class FullDiskStore:
    """Store whose writes always fail."""

    def get(self, key: str) -> str | None:
        return None

    def set(self, key: str, value: str) -> None:
        raise StoreError("Cannot write state file: No space left on device")


@pytest.mark.asyncio
async def test_store_write_failure_keeps_history(
    settings: Settings, mock_manager: MagicMock, caplog: pytest.LogCaptureFixture
) -> None:
    """Test a failing store is logged and history stays in memory."""
    session = SyncSession(settings, mock_manager, store=FullDiskStore())
    message = SyncMessage(type="text", payload="hi", sender="Phone", timestamp=1)
    item = await session.handle_incoming(message)
    sent = await session.send("reply")

    assert item is not None and sent is not None
    assert session.history.items() == [sent, item]
    assert "Could not save history" in caplog.text
    assert await session.clear_history(lambda: True) is True
    assert len(session.history) == 0
