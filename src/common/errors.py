from __future__ import annotations


class PushEnvError(RuntimeError):
    """Base error for pushenv."""


class ConfigError(PushEnvError):
    """Project or remote configuration is missing or unusable."""


class FormatError(PushEnvError):
    """Malformed envelope, payload, index or config document."""


class AuthenticationError(PushEnvError):
    """Authenticated decryption failed (wrong key or tampered data)."""


class NotFoundError(PushEnvError):
    """Missing stage, version or remote object."""


class EmptyHistoryError(PushEnvError):
    """The stage has no recorded versions yet."""


class NetworkError(PushEnvError):
    """Remote store unreachable or returned an unexpected response."""


class PassphraseError(PushEnvError):
    """Passphrase rejected before any key derivation (too short, mismatch)."""


__all__ = [
    "PushEnvError",
    "ConfigError",
    "FormatError",
    "AuthenticationError",
    "NotFoundError",
    "EmptyHistoryError",
    "NetworkError",
    "PassphraseError",
]
