"""CLI handling for clipsync.

This module provides the command-line interface for clipsync, handling
argument parsing via click, logging configuration, and dispatching to relay
or client mode based on user-specified options.

Usage:
    clipsync --relay [--host HOST] [--port PORT] [--pairing] [--verbose]
    clipsync --client [--url URL] [--name NAME] [--secret SECRET]
                      [--pairing-code CODE] [--state-file PATH] [--verbose]
"""

import sys

import click

from clipsync.main_logging import configure_logging
from clipsync.main_options import ModeOption
from clipsync.relay import DEFAULT_HOST, DEFAULT_PORT


@click.command()
@click.option(
    "--relay",
    cls=ModeOption,
    conflicts_with=["client"],
    help="Run the relay server",
)
@click.option(
    "--client",
    cls=ModeOption,
    conflicts_with=["relay"],
    help="Run an interactive sync client",
)
@click.option(
    "--host",
    default=DEFAULT_HOST,
    show_default=True,
    help="Relay: interface to listen on",
)
@click.option(
    "--port",
    type=click.IntRange(0, 65535),
    default=DEFAULT_PORT,
    show_default=True,
    envvar="CLIPSYNC_PORT",
    help="Relay: TCP port to listen on",
)
@click.option(
    "--pairing",
    is_flag=True,
    help="Relay: only forward between devices sharing a pairing code",
)
@click.option(
    "--url",
    envvar="CLIPSYNC_URL",
    help="Client: relay WebSocket URL (saved for next time)",
)
@click.option(
    "--name",
    envvar="CLIPSYNC_DEVICE_NAME",
    help="Client: device display name (saved for next time)",
)
@click.option(
    "--secret",
    envvar="CLIPSYNC_SECRET",
    help="Client: shared secret for end-to-end encryption; empty disables it",
)
@click.option(
    "--pairing-code",
    envvar="CLIPSYNC_PAIRING_CODE",
    help="Client: pair through a --pairing relay using this code",
)
@click.option(
    "--state-file",
    type=click.Path(dir_okay=False),
    envvar="CLIPSYNC_STATE_FILE",
    help="Client: JSON file for settings and history (default: in memory)",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Enable DEBUG-level logging",
)
def main(
    relay: bool,
    client: bool,
    host: str,
    port: int,
    pairing: bool,
    url: str | None,
    name: str | None,
    secret: str | None,
    pairing_code: str | None,
    state_file: str | None,
    verbose: bool,
) -> None:
    """Share clipboard text and small files between devices through a relay."""
    if not relay and not client:
        raise click.UsageError("Either --relay or --client must be specified")

    configure_logging(verbose)

    if relay:
        _run_relay(host, port, pairing)
    else:
        _run_client(url, name, secret, pairing_code, state_file)


def _run_relay(host: str, port: int, pairing: bool) -> None:
    """Run relay mode.

    Args:
        host: Interface to listen on.
        port: TCP port to listen on.
        pairing: Whether to group peers by pairing code.
    """
    import asyncio

    from clipsync.relay import run_relay

    try:
        asyncio.run(run_relay(host, port, pairing))
    except OSError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _run_client(
    url: str | None,
    name: str | None,
    secret: str | None,
    pairing_code: str | None,
    state_file: str | None,
) -> None:
    """Run client mode with settings from the state store and options.

    Args:
        url: Relay URL override.
        name: Device name override.
        secret: Shared secret override.
        pairing_code: Pairing code, for pairing relays.
        state_file: Path of the JSON state file, or None for memory only.
    """
    import asyncio

    from clipsync.client import prepare_settings, run_client
    from clipsync.crypto import KeyDerivationError
    from clipsync.store import JsonFileStore, MemoryStore, StoreError

    try:
        store = JsonFileStore(state_file) if state_file else MemoryStore()
        settings = prepare_settings(store, url=url, name=name, secret=secret)
        asyncio.run(run_client(settings, store, pairing_code))
    except (StoreError, KeyDerivationError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
