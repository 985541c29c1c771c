#!/usr/bin/env python3
"""Client mode implementation for clipsync.

This module provides the entry point for client mode, which connects to a
relay, prints clipboard items received from other devices, and sends each
line typed on stdin. Settings and history are loaded from the state store
at startup and written back whenever they change.

See connection.py for connection handling.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from contextlib import suppress
from typing import TYPE_CHECKING

import click

from clipsync.client_commands import confirm_from, format_item, handle_line
from clipsync.connection import ConnectionManager
from clipsync.connection_state import ConnectionState
from clipsync.crypto import KeyDerivationError
from clipsync.pairing import DeviceConfig, PairingConnectionManager
from clipsync.session import SyncSession
from clipsync.settings import (
    SETTINGS_KEY,
    load_history,
    load_settings,
    save_settings,
    update_settings,
)

if TYPE_CHECKING:
    from clipsync.settings import KeyValueStore, Settings


def prepare_settings(
    store: KeyValueStore,
    url: str | None = None,
    name: str | None = None,
    secret: str | None = None,
) -> Settings:
    """Load stored settings and apply command-line overrides.

    Overrides are persisted, as is a first-run default device name.

    Args:
        store: The state store.
        url: Relay URL override.
        name: Device name override.
        secret: Shared secret override; an empty string disables encryption.

    Returns:
        The effective settings.
    """
    first_run = store.get(SETTINGS_KEY) is None
    settings = load_settings(store)
    if first_run:
        save_settings(store, settings)
    changes = {}
    if url is not None:
        changes["server_url"] = url
    if name is not None:
        changes["device_name"] = name
    if secret is not None:
        changes["secret_key"] = secret
    return update_settings(store, settings, **changes)


async def open_stdin_reader() -> asyncio.StreamReader:
    """Wrap stdin in an asyncio StreamReader."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    return reader


async def print_incoming(session: SyncSession) -> None:
    """Print items received from other devices as they arrive."""
    async for item in session.incoming():
        click.echo(format_item(item))
        if session.settings.enable_sound:
            click.echo("\a", nl=False)


async def read_commands(session: SyncSession, reader: asyncio.StreamReader) -> None:
    """Handle stdin lines until /quit or end of input."""

    async def confirm() -> bool:
        return await confirm_from(reader, "Clear local history?")

    while True:
        line = await reader.readline()
        if not line:
            return
        if not await handle_line(session, line.decode("utf-8", errors="replace"), confirm):
            return


async def run_client(
    settings: Settings, store: KeyValueStore, pairing_code: str | None = None
) -> None:
    """Run client mode until /quit, end of input, SIGINT or SIGTERM.

    Args:
        settings: Effective device settings.
        store: The state store for history.
        pairing_code: If given, pair through a pairing relay with this code.

    Raises:
        KeyDerivationError: If no key can be derived from the pairing code.
    """
    manager: ConnectionManager
    if pairing_code is not None:
        pairing = PairingConnectionManager(DeviceConfig(device_name=settings.device_name))
        await pairing.connect(pairing_code, settings.server_url)
        if pairing.state is ConnectionState.ERROR:
            raise KeyDerivationError("Cannot derive a session key from the pairing code")
        manager = pairing
    else:
        manager = ConnectionManager(settings.device_name)
        await manager.connect(settings.server_url)

    session = SyncSession(settings, manager, load_history(store), store)
    click.echo(f"Syncing as {settings.device_name} via {settings.server_url}", err=True)

    shutdown_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, shutdown_requested.set)
    loop.add_signal_handler(signal.SIGTERM, shutdown_requested.set)

    reader = await open_stdin_reader()
    tasks = {
        asyncio.create_task(print_incoming(session)),
        asyncio.create_task(read_commands(session, reader)),
        asyncio.create_task(shutdown_requested.wait()),
    }
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        await session.shutdown()
