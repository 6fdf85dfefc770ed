"""Optional encryption of export files that carry recovery keys.

An encrypted export is a single header line followed by a Fernet token::

    #edl-encrypted-export v1
    gAAAAAB...

Plain CSV exports never start with ``#`` so the two are told apart by the
header alone.  The key comes from ``EXPORT_ENCRYPTION_KEY`` and is read on
every call; it may be a Fernet key or any passphrase.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger("security.encryption")

EXPORT_KEY_ENV = "EXPORT_ENCRYPTION_KEY"
EXPORT_HEADER = b"#edl-encrypted-export"
FORMAT_VERSION = 1


class EncryptionError(Exception):
    """Base class for export encryption failures."""


class MissingExportEncryptionKeyError(EncryptionError):
    """Raised when encryption is requested or required without a configured key."""


class ExportDecryptionError(EncryptionError):
    """Raised when an encrypted export cannot be decrypted with the configured key."""


def _fernet_for(raw_key: str) -> Fernet:
    try:
        return Fernet(raw_key.encode("ascii"))
    except (ValueError, UnicodeEncodeError):
        pass
    # Passphrase: stretch to the 32 bytes Fernet expects.
    digest = hashlib.sha256(raw_key.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def _configured_cipher() -> Optional[Fernet]:
    raw_key = (os.getenv(EXPORT_KEY_ENV) or "").strip()
    if not raw_key:
        return None
    return _fernet_for(raw_key)


def export_key_configured() -> bool:
    return _configured_cipher() is not None


def require_export_key() -> Fernet:
    cipher = _configured_cipher()
    if cipher is None:
        raise MissingExportEncryptionKeyError(f"{EXPORT_KEY_ENV} is not configured")
    return cipher


def is_encrypted_export(data: bytes) -> bool:
    return data.startswith(EXPORT_HEADER + b" ")


def encrypt_export(data: bytes) -> bytes:
    """Wrap a plaintext export; raises when no export key is configured."""

    token = require_export_key().encrypt(data)
    logger.debug("Encrypted %s bytes of export data", len(data))
    return EXPORT_HEADER + f" v{FORMAT_VERSION}\n".encode("ascii") + token


def decrypt_export(data: bytes) -> bytes:
    """Return the plaintext of an encrypted export; plain exports pass through."""

    if not is_encrypted_export(data):
        return data

    header, _, token = data.partition(b"\n")
    version = header[len(EXPORT_HEADER) :].strip().decode("ascii", "replace")
    if version != f"v{FORMAT_VERSION}":
        raise ExportDecryptionError(f"Unsupported encrypted export version: {version or 'none'}")

    try:
        cipher = require_export_key()
    except MissingExportEncryptionKeyError as exc:
        raise MissingExportEncryptionKeyError(
            f"Encrypted export detected but {EXPORT_KEY_ENV} is not configured"
        ) from exc

    try:
        return cipher.decrypt(token.strip())
    except InvalidToken as exc:
        raise ExportDecryptionError("Export could not be decrypted with the configured key") from exc


__all__ = [
    "EXPORT_KEY_ENV",
    "EncryptionError",
    "ExportDecryptionError",
    "MissingExportEncryptionKeyError",
    "decrypt_export",
    "encrypt_export",
    "export_key_configured",
    "is_encrypted_export",
    "require_export_key",
]
