#!/usr/bin/env python3
"""
File payloads.

Files travel as data-URLs ("data:<mime>;base64,<content>") in the payload
of a "file" message, so they pass through the same text-only envelope and
encryption as clipboard text.
"""
from __future__ import annotations

import base64
import binascii
import mimetypes
from dataclasses import dataclass
from pathlib import Path

# Maximum size of a file accepted for sending (5 MB).
MAX_FILE_SIZE: int = 5 * 1024 * 1024

# MIME type used when the extension is not recognized.
DEFAULT_MIME_TYPE: str = "application/octet-stream"


class FileTooLargeError(ValueError):
    """Exception raised for files above MAX_FILE_SIZE."""

    pass


@dataclass(frozen=True)
class FilePayload:
    """
    A file prepared for sending.

    Attributes:
        data_url: The file content as a data-URL.
        file_name: Base name of the file.
        file_type: MIME type.
    """

    data_url: str
    file_name: str
    file_type: str


def validate_file_size(size: int) -> bool:
    """
    Check if a file size is within the allowed limit.

    Args:
        size: File size in bytes.

    Returns:
        True if size <= MAX_FILE_SIZE, False otherwise.
    """
    return size <= MAX_FILE_SIZE


def to_data_url(data: bytes, mime_type: str) -> str:
    """Encode raw bytes as a base64 data-URL."""
    return f"data:{mime_type};base64," + base64.b64encode(data).decode("ascii")


def from_data_url(data_url: str) -> bytes:
    """
    Decode the content of a base64 data-URL.

    Raises:
        ValueError: If data_url is not a base64 data-URL.
    """
    header, sep, encoded = data_url.partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError("Not a base64 data-URL")
    try:
        return base64.b64decode(encoded, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 in data-URL: {e}") from e


def read_file_payload(path: str | Path) -> FilePayload:
    """
    Read a local file into a FilePayload.

    Args:
        path: Path of the file to send.

    Returns:
        The prepared payload.

    Raises:
        FileTooLargeError: If the file exceeds MAX_FILE_SIZE.
        OSError: If the file cannot be read.
    """
    path = Path(path)
    size = path.stat().st_size
    if not validate_file_size(size):
        raise FileTooLargeError(
            f"{path.name} is {size} bytes, limit is {MAX_FILE_SIZE // (1024 * 1024)} MB"
        )
    mime_type = mimetypes.guess_type(path.name)[0] or DEFAULT_MIME_TYPE
    return FilePayload(
        data_url=to_data_url(path.read_bytes(), mime_type),
        file_name=path.name,
        file_type=mime_type,
    )
