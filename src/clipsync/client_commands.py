#!/usr/bin/env python3
"""Interactive commands for client mode.

Each line read from stdin is either content to send or a command:

    /file PATH     send a file
    /history       list history, newest first
    /restore N     resend history item N (text items only)
    /save N PATH   write file item N to PATH
    /clear         clear history after confirmation
    /quit          disconnect and exit

A line starting with "//" sends the rest of the line, starting with "/",
as text.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import click

from clipsync.files import FileTooLargeError, from_data_url

if TYPE_CHECKING:
    from clipsync.history import HistoryItem
    from clipsync.session import SyncSession

logger = logging.getLogger(__name__)

# Characters of text content shown per history line.
PREVIEW_LENGTH: int = 60


def format_item(item: HistoryItem, index: int | None = None) -> str:
    """Format a history item as a single display line.

    Args:
        item: The item to format.
        index: Position in history to prefix the line with, if any.
    """
    when = datetime.fromtimestamp(item.timestamp / 1000).strftime("%H:%M:%S")
    who = "you" if item.is_self else item.sender
    if item.type == "file":
        body = f"[file] {item.file_name or 'unnamed'}"
    else:
        body = item.content.replace("\n", " ")
        if len(body) > PREVIEW_LENGTH:
            body = body[:PREVIEW_LENGTH] + "..."
    prefix = f"{index:>2}. " if index is not None else ""
    return f"{prefix}[{when}] {who}: {body}"


async def confirm_from(reader: asyncio.StreamReader, prompt: str) -> bool:
    """Ask a yes/no question, reading the answer from reader."""
    click.echo(f"{prompt} [y/N]: ", nl=False)
    answer = await reader.readline()
    return answer.decode("utf-8", errors="replace").strip().lower() in ("y", "yes")


async def handle_line(
    session: SyncSession,
    line: str,
    confirm: Callable[[], Awaitable[bool]],
) -> bool:
    """Handle one input line.

    Args:
        session: The sync session.
        line: The line as read, with or without its newline.
        confirm: Asks the user to confirm a destructive action.

    Returns:
        False if the client should exit, True otherwise.
    """
    text = line.rstrip("\r\n")
    if text.startswith("//"):
        await session.send(text[1:])
        return True
    if not text.startswith("/"):
        await session.send(text)
        return True

    command, _, arg = text.partition(" ")
    arg = arg.strip()
    if command == "/quit":
        return False
    if command == "/history":
        items = session.history.items()
        if not items:
            click.echo("No history yet.")
        for index, item in enumerate(items):
            click.echo(format_item(item, index))
    elif command == "/file":
        await _send_file(session, arg)
    elif command == "/restore":
        await _restore(session, arg)
    elif command == "/save":
        _save(session, arg)
    elif command == "/clear":
        if await session.clear_history(confirm):
            click.echo("History cleared.")
    else:
        click.echo(f"Unknown command: {command}", err=True)
    return True


async def _send_file(session: SyncSession, path: str) -> None:
    if not path:
        click.echo("Usage: /file PATH", err=True)
        return
    try:
        item = await session.send_file(path)
    except FileTooLargeError as e:
        click.echo(f"Error: {e}", err=True)
        return
    except OSError as e:
        click.echo(f"Error: cannot read {path}: {e}", err=True)
        return
    if item is not None:
        click.echo(format_item(item))


async def _restore(session: SyncSession, arg: str) -> None:
    try:
        item = session.history.get(int(arg))
    except (ValueError, IndexError):
        click.echo(f"No history item {arg!r}", err=True)
        return
    if await session.restore(item) is None:
        click.echo("Only text items can be restored.", err=True)


def _save(session: SyncSession, arg: str) -> None:
    index, _, path = arg.partition(" ")
    path = path.strip()
    if not path:
        click.echo("Usage: /save N PATH", err=True)
        return
    try:
        item = session.history.get(int(index))
    except (ValueError, IndexError):
        click.echo(f"No history item {index!r}", err=True)
        return
    if item.type != "file":
        click.echo("Only file items can be saved.", err=True)
        return
    try:
        data = from_data_url(item.content)
    except ValueError as e:
        click.echo(f"Error: cannot decode {item.file_name or 'file'}: {e}", err=True)
        return
    try:
        Path(path).write_bytes(data)
    except OSError as e:
        click.echo(f"Error: cannot write {path}: {e}", err=True)
        return
    click.echo(f"Saved {len(data)} bytes to {path}")
