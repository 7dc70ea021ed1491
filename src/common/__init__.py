"""
Common utilities for pushenv.

Modules:
- errors: exception taxonomy shared by every layer
- crypto: PBKDF2 key derivation and the AES-256-GCM envelope
- envfile: .env parsing and key-level diff
- r2: remote store settings and bucket probe
"""

__all__ = [
    "crypto",
    "envfile",
    "errors",
    "r2",
]
