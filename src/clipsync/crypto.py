#!/usr/bin/env python3
"""
Shared-secret encryption for clipboard payloads.

Payloads are encrypted with AES-256-GCM under a key derived from a
human-entered secret with PBKDF2-HMAC-SHA256. Each encryption uses a fresh
random 96-bit nonce. The ciphertext (with its 16-byte tag appended) and the
nonce travel base64-encoded in the envelope's payload and iv fields.

The salt is fixed, so the same secret yields the same key on every
installation. Secrets are therefore only as strong as the iteration count
makes them against precomputed dictionaries.

The *_async wrappers run the primitive in a worker thread so key derivation
never stalls the event loop.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

# Fixed key-derivation salt shared by every client.
KDF_SALT: bytes = b"clipsync-salt-v2"

# PBKDF2 iteration count.
KDF_ITERATIONS: int = 100000

# AES-256 key length in bytes.
KEY_LENGTH: int = 32

# AES-GCM nonce length in bytes (96 bits).
NONCE_LENGTH: int = 12


class KeyDerivationError(Exception):
    """
    Exception raised when a key cannot be derived from a secret.

    Raised for empty or non-text secrets and when the crypto backend does
    not provide the required primitives.
    """

    pass


class DecryptionFailure(Exception):
    """
    Exception raised when a payload cannot be authenticated and decrypted.

    Covers a wrong secret, tampered or truncated ciphertext, and malformed
    base64 encoding. Never accompanied by partial plaintext.
    """

    pass


@dataclass(frozen=True)
class EncryptedPayload:
    """
    Base64-encoded result of one encryption.

    Attributes:
        payload: base64(ciphertext || tag).
        iv: base64(nonce).
    """

    payload: str
    iv: str


def derive_key(password: str) -> bytes:
    """
    Derive a 256-bit AES key from a shared secret.

    Args:
        password: The human-entered secret.

    Returns:
        The 32-byte key.

    Raises:
        KeyDerivationError: If the secret is empty, not a string, or the
            backend cannot run PBKDF2-HMAC-SHA256.
    """
    if not isinstance(password, str) or not password:
        raise KeyDerivationError("Secret must be a non-empty string")
    try:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=KDF_SALT,
            iterations=KDF_ITERATIONS,
        )
        return kdf.derive(password.encode("utf-8"))
    except (UnsupportedAlgorithm, ValueError) as e:
        raise KeyDerivationError(f"Key derivation failed: {e}") from e


def encrypt_with_key(text: str, key: bytes) -> EncryptedPayload:
    """
    Encrypt text under an already-derived key.

    Args:
        text: Plaintext to encrypt.
        key: 32-byte key from derive_key().

    Returns:
        EncryptedPayload with a freshly generated nonce.
    """
    nonce = os.urandom(NONCE_LENGTH)
    ciphertext = AESGCM(key).encrypt(nonce, text.encode("utf-8"), None)
    return EncryptedPayload(
        payload=base64.b64encode(ciphertext).decode("ascii"),
        iv=base64.b64encode(nonce).decode("ascii"),
    )


def decrypt_with_key(payload: str, iv: str, key: bytes) -> str:
    """
    Authenticate and decrypt a payload under an already-derived key.

    Args:
        payload: base64(ciphertext || tag).
        iv: base64(nonce).
        key: 32-byte key from derive_key().

    Returns:
        The decrypted plaintext.

    Raises:
        DecryptionFailure: On authentication failure or malformed input.
    """
    try:
        nonce = base64.b64decode(iv, validate=True)
        ciphertext = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise DecryptionFailure(f"Malformed ciphertext encoding: {e}") from e
    if len(nonce) != NONCE_LENGTH:
        raise DecryptionFailure(f"Expected {NONCE_LENGTH}-byte nonce, got {len(nonce)}")
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as e:
        raise DecryptionFailure("Authentication failed (wrong secret or corrupted data)") from e
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionFailure("Decrypted content is not valid UTF-8") from e


def encrypt_text(text: str, password: str) -> EncryptedPayload:
    """Derive the key for password and encrypt text under it."""
    return encrypt_with_key(text, derive_key(password))


def decrypt_text(payload: str, iv: str, password: str) -> str:
    """
    Re-derive the key for password and decrypt payload.

    Raises:
        KeyDerivationError: If password is unusable.
        DecryptionFailure: If the payload does not authenticate.
    """
    return decrypt_with_key(payload, iv, derive_key(password))


async def derive_key_async(password: str) -> bytes:
    """Run derive_key() in a worker thread."""
    return await asyncio.to_thread(derive_key, password)


async def encrypt_text_async(text: str, password: str) -> EncryptedPayload:
    """Run encrypt_text() in a worker thread."""
    return await asyncio.to_thread(encrypt_text, text, password)


async def decrypt_text_async(payload: str, iv: str, password: str) -> str:
    """Run decrypt_text() in a worker thread."""
    return await asyncio.to_thread(decrypt_text, payload, iv, password)


async def encrypt_with_key_async(text: str, key: bytes) -> EncryptedPayload:
    """Run encrypt_with_key() in a worker thread."""
    return await asyncio.to_thread(encrypt_with_key, text, key)


async def decrypt_with_key_async(payload: str, iv: str, key: bytes) -> str:
    """Run decrypt_with_key() in a worker thread."""
    return await asyncio.to_thread(decrypt_with_key, payload, iv, key)
