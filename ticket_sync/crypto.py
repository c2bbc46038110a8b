"""AES-GCM encryption of stored IMAP passwords.

Key, IV and ciphertext are base64 strings.  The ciphertext carries the
16-byte GCM tag at its end, the same layout WebCrypto produces, so secrets
written by the main application decrypt here unchanged.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import DecryptionError

IV_BYTES = 12


def _load_key(key_b64: str) -> AESGCM:
    try:
        key = base64.b64decode(key_b64, validate=True)
        return AESGCM(key)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError("Encryption key is not a base64 AES key") from exc


def generate_key() -> str:
    """Return a fresh base64-encoded AES-256 key."""
    return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode("ascii")


def encrypt_secret(plaintext: str, key_b64: str) -> tuple[str, str]:
    """Encrypt *plaintext*; returns ``(ciphertext_b64, iv_b64)``."""
    aes = _load_key(key_b64)
    iv = os.urandom(IV_BYTES)
    ciphertext = aes.encrypt(iv, plaintext.encode("utf-8"), None)
    return (
        base64.b64encode(ciphertext).decode("ascii"),
        base64.b64encode(iv).decode("ascii"),
    )


def decrypt_secret(ciphertext_b64: str, iv_b64: str, key_b64: str) -> str:
    """Decrypt a stored secret.  Any failure raises :class:`DecryptionError`."""
    aes = _load_key(key_b64)
    try:
        ciphertext = base64.b64decode(ciphertext_b64, validate=True)
        iv = base64.b64decode(iv_b64, validate=True)
        plaintext = aes.decrypt(iv, ciphertext, None)
        return plaintext.decode("utf-8")
    except (binascii.Error, ValueError, InvalidTag, UnicodeDecodeError) as exc:
        raise DecryptionError("Stored secret could not be decrypted") from exc
