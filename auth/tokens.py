"""
Session token creation and verification.

Tokens are base64-encoded JSON payloads signed with HMAC-SHA256.
Secret key is loaded from ``config.session_secret`` (env var: ``SESSION_SECRET``).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
import uuid
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Any, Dict, Optional

from config.settings import config


class InvalidSessionToken(ValueError):
    pass


def _sign(raw: bytes) -> str:
    return hmac.new(config.session_secret.encode(), raw, hashlib.sha256).hexdigest()


def create_session_token(user_id: str, *, now: Optional[float] = None) -> str:
    """Create a signed token containing ``user_id`` and expiry."""
    issued = int(now if now is not None else time.time())
    payload = {
        "user_id": str(user_id),
        "iat": issued,
        "exp": issued + config.session_expiry_seconds,
    }
    raw = json.dumps(payload, separators=(",", ":")).encode()
    return urlsafe_b64encode(raw).decode() + "." + _sign(raw)


def verify_session_token(token: str) -> Dict[str, Any]:
    """
    Verify token and return its payload.

    Raises ``InvalidSessionToken`` on malformed, forged or expired tokens.
    """
    if not config.session_secret:
        raise InvalidSessionToken("session secret not configured")
    try:
        encoded, sig = token.split(".", 1)
        raw = urlsafe_b64decode(encoded.encode())
    except (ValueError, AttributeError) as exc:
        raise InvalidSessionToken("bad format") from exc
    if not hmac.compare_digest(sig, _sign(raw)):
        raise InvalidSessionToken("bad signature")
    try:
        payload = json.loads(raw)
        uuid.UUID(payload["user_id"])
    except (ValueError, KeyError, TypeError) as exc:
        raise InvalidSessionToken("bad payload") from exc
    if payload.get("exp", 0) < time.time():
        raise InvalidSessionToken("token expired")
    return payload


def needs_refresh(payload: Dict[str, Any], *, now: Optional[float] = None) -> bool:
    """True once the token has entered the last quarter of its lifetime."""
    current = now if now is not None else time.time()
    return payload.get("exp", 0) - current < config.session_expiry_seconds / 4
