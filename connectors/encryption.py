"""
Token encryption — OAuth access/refresh tokens are stored Fernet-encrypted.

The key comes from ``config.token_encryption_key`` (env var:
``TOKEN_ENCRYPTION_KEY``). Generate one with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

Without a key, tokens are stored as plaintext and a warning is logged once.
Values written before encryption was enabled are read back unchanged.
"""

from __future__ import annotations

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from config.settings import config

logger = logging.getLogger(__name__)

_fernet: Optional[Fernet] = None
_initialised = False


def _cipher() -> Optional[Fernet]:
    global _fernet, _initialised
    if _initialised:
        return _fernet
    _initialised = True

    key = config.token_encryption_key
    if not key:
        logger.warning("TOKEN_ENCRYPTION_KEY not set — OAuth tokens will be stored as plaintext.")
        return None
    try:
        _fernet = Fernet(key.encode())
    except (ValueError, TypeError) as exc:
        logger.error("Invalid TOKEN_ENCRYPTION_KEY, storing tokens as plaintext: %s", exc)
        _fernet = None
    return _fernet


def reset_cipher() -> None:
    """Forget the cached cipher (the key is re-read on next use)."""
    global _fernet, _initialised
    _fernet = None
    _initialised = False


def encrypt_token(plaintext: Optional[str]) -> Optional[str]:
    if not plaintext:
        return None
    cipher = _cipher()
    if cipher is None:
        return plaintext
    return cipher.encrypt(plaintext.encode()).decode()


def decrypt_token(stored: Optional[str]) -> Optional[str]:
    if not stored:
        return None
    cipher = _cipher()
    if cipher is None:
        return stored
    try:
        return cipher.decrypt(stored.encode()).decode()
    except InvalidToken:
        # legacy plaintext row
        return stored


def is_encryption_enabled() -> bool:
    return _cipher() is not None
