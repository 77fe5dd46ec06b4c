"""
OAuth ``state`` tokens (CSRF protection).

A state is ``base64url(json payload) + "." + hmac`` and has a server-side
``oauth_states`` row keyed by its nonce. The row binds the state to the
initiating session user and makes it single use.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
import time
import uuid
from base64 import urlsafe_b64decode, urlsafe_b64encode
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import config
from database.helpers import StoreError
from database.models import OAuthState

logger = logging.getLogger(__name__)

DEFAULT_RETURN_TO = "/dashboard"


class InvalidState(ValueError):
    pass


def safe_return_path(value: Optional[str], default: str = DEFAULT_RETURN_TO) -> str:
    """Accept only in-app absolute paths; anything else becomes ``default``."""
    if not value:
        return default
    value = value.strip()
    if not value.startswith("/") or value.startswith("//") or "\\" in value:
        return default
    parts = urlsplit(value)
    if parts.scheme or parts.netloc:
        return default
    return value


def _b64encode(raw: bytes) -> str:
    return urlsafe_b64encode(raw).decode().rstrip("=")


def _b64decode(data: str) -> bytes:
    return urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _sign(raw: bytes) -> str:
    return hmac.new(config.oauth_state_secret.encode(), raw, hashlib.sha256).hexdigest()


def encode_state(payload: Dict[str, Any]) -> str:
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode()
    return _b64encode(raw) + "." + _sign(raw)


def decode_state(state: str) -> Dict[str, Any]:
    """Check the signature and return the payload. Raises ``InvalidState``."""
    try:
        encoded, sig = state.split(".", 1)
        raw = _b64decode(encoded)
    except (ValueError, AttributeError) as exc:
        raise InvalidState("bad format") from exc
    if not config.oauth_state_secret or not hmac.compare_digest(sig, _sign(raw)):
        raise InvalidState("bad signature")
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise InvalidState("bad payload") from exc
    if not isinstance(payload, dict) or "n" not in payload:
        raise InvalidState("bad payload")
    return payload


async def issue_state(
    session: AsyncSession,
    provider: str,
    user_id: Optional[str],
    return_to: str,
    extra: Optional[Dict[str, Any]] = None,
) -> str:
    """Persist a new state row and return the signed state string."""
    nonce = secrets.token_urlsafe(24)
    now = datetime.now(timezone.utc)
    session.add(
        OAuthState(
            nonce=nonce,
            user_id=uuid.UUID(user_id) if user_id else None,
            provider=provider,
            return_to=return_to,
            created_at=now,
            expires_at=now + timedelta(seconds=config.oauth_state_ttl_seconds),
        )
    )
    try:
        await session.flush()
    except SQLAlchemyError as exc:
        logger.error("Could not persist OAuth state for %s: %s", provider, exc)
        raise StoreError(str(exc)) from exc
    payload = {"n": nonce, "p": provider, "r": return_to, "ts": int(time.time())}
    payload.update(extra or {})
    return encode_state(payload)


async def consume_state(
    session: AsyncSession,
    state: str,
    provider: str,
    user_id: str,
) -> Dict[str, Any]:
    """
    Validate and burn a state.

    The signature, provider, expiry and owning user must all match and the
    state must not have been used before. Returns the payload.
    """
    payload = decode_state(state)
    if payload.get("p") != provider:
        raise InvalidState("provider mismatch")

    try:
        row = (
            await session.execute(
                select(OAuthState).where(OAuthState.nonce == payload["n"]).with_for_update()
            )
        ).scalar_one_or_none()
    except SQLAlchemyError as exc:
        logger.error("Could not load OAuth state: %s", exc)
        raise StoreError(str(exc)) from exc
    if row is None:
        raise InvalidState("unknown state")
    now = datetime.now(timezone.utc)
    if row.consumed_at is not None:
        raise InvalidState("state already used")
    if row.expires_at < now:
        raise InvalidState("state expired")
    if row.user_id is None or str(row.user_id) != str(user_id):
        raise InvalidState("state bound to another session")

    row.consumed_at = now
    await session.flush()
    return payload
