"""
Passphrase key derivation and the AES-256-GCM envelope.

Envelope wire form (hex fields joined by ":"):

    iv:tag:ciphertext

The storage layer prefixes the derivation salt so that any device holding
only the passphrase can rebuild the key:

    salt:iv:tag:ciphertext
"""

from __future__ import annotations

import binascii
import secrets
import time
from dataclasses import dataclass
from typing import Final, Optional, Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import AuthenticationError, FormatError


KEY_LENGTH: Final[int] = 32  # AES-256
SALT_LENGTH: Final[int] = 16
IV_LENGTH: Final[int] = 12  # 96-bit GCM nonce
TAG_LENGTH: Final[int] = 16
# Existing remote payloads were derived with this count; changing it breaks them.
PBKDF2_ITERATIONS: Final[int] = 100_000
DELIMITER: Final[str] = ":"

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


@dataclass(frozen=True)
class DerivedKey:
    """A symmetric key together with the salt it was derived from."""

    key: bytes
    salt: bytes

    def __repr__(self) -> str:
        return f"DerivedKey(key=<{len(self.key)} bytes>, salt={self.salt.hex()})"


def _to_bytes(data: Union[str, bytes]) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


def _unhex(field: str, what: str) -> bytes:
    try:
        return binascii.unhexlify(field)
    except (binascii.Error, ValueError) as ex:
        raise FormatError(f"Invalid encrypted data format: {what} is not hex") from ex


def generate_project_id() -> str:
    """Return a new opaque project id, e.g. ``env_m1x2y3z4_0123456789abcdef``."""
    millis = int(time.time() * 1000)
    stamp = ""
    while millis:
        millis, rem = divmod(millis, 36)
        stamp = _BASE36[rem] + stamp
    return f"env_{stamp or '0'}_{secrets.token_hex(8)}"


def derive_key(
    passphrase: str,
    salt: Optional[bytes] = None,
    *,
    iterations: Optional[int] = None,
) -> DerivedKey:
    """Stretch a passphrase into a 256-bit key with PBKDF2-HMAC-SHA256.

    A random salt is generated when none is given. Same passphrase and salt
    always yield the same key.
    """
    used_salt = salt if salt is not None else secrets.token_bytes(SALT_LENGTH)
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=used_salt,
        iterations=iterations or PBKDF2_ITERATIONS,
    )
    key = kdf.derive(passphrase.encode("utf-8"))
    return DerivedKey(key=key, salt=used_salt)


def seal(plaintext: Union[str, bytes], key: bytes) -> str:
    """Encrypt with a fresh random IV and return ``iv:tag:ciphertext``."""
    if len(key) != KEY_LENGTH:
        raise ValueError(f"Key must be exactly {KEY_LENGTH} bytes")
    iv = secrets.token_bytes(IV_LENGTH)
    # AESGCM appends the tag to the ciphertext
    out = AESGCM(key).encrypt(iv, _to_bytes(plaintext), None)
    ciphertext, tag = out[:-TAG_LENGTH], out[-TAG_LENGTH:]
    return DELIMITER.join((iv.hex(), tag.hex(), ciphertext.hex()))


def open_envelope(envelope: Union[str, bytes], key: bytes) -> bytes:
    """Verify and decrypt an envelope produced by `seal`.

    Raises:
    - FormatError if the envelope does not have the three required fields.
    - AuthenticationError if the tag does not verify under `key`.
    """
    text = decode_payload(envelope)
    parts = text.strip().split(DELIMITER)
    if len(parts) != 3 or not parts[0] or not parts[1]:
        raise FormatError("Invalid encrypted data format: expected iv:tag:ciphertext")

    iv = _unhex(parts[0], "iv")
    tag = _unhex(parts[1], "auth tag")
    ciphertext = _unhex(parts[2], "ciphertext")
    if len(iv) != IV_LENGTH:
        raise FormatError(f"Invalid encrypted data format: iv must be {IV_LENGTH} bytes")
    if len(tag) != TAG_LENGTH:
        raise FormatError(f"Invalid encrypted data format: auth tag must be {TAG_LENGTH} bytes")
    if len(key) != KEY_LENGTH:
        raise AuthenticationError("Key is not a valid 256-bit key")

    try:
        return AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as ex:
        raise AuthenticationError("Authentication tag verification failed") from ex


def pack_payload(salt: bytes, envelope: str) -> str:
    """Prefix an envelope with its derivation salt for remote storage."""
    return f"{salt.hex()}{DELIMITER}{envelope}"


def decode_payload(data: Union[str, bytes]) -> str:
    """Stored payload bytes as text; anything that is not UTF-8 is malformed."""
    if isinstance(data, str):
        return data
    try:
        return bytes(data).decode("utf-8")
    except UnicodeDecodeError as ex:
        raise FormatError("Invalid encrypted data format: payload is not text") from ex


def unpack_payload(payload: Union[str, bytes]) -> Tuple[bytes, str]:
    """Split a stored payload into ``(salt, envelope)``."""
    text = decode_payload(payload)
    salt_hex, sep, envelope = text.strip().partition(DELIMITER)
    if not sep or not salt_hex:
        raise FormatError("Invalid encrypted data format: missing salt")
    return _unhex(salt_hex, "salt"), envelope


__all__ = [
    "DerivedKey",
    "decode_payload",
    "derive_key",
    "generate_project_id",
    "open_envelope",
    "pack_payload",
    "seal",
    "unpack_payload",
    "KEY_LENGTH",
    "SALT_LENGTH",
    "IV_LENGTH",
    "TAG_LENGTH",
    "PBKDF2_ITERATIONS",
]
