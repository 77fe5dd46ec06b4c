"""
FastAPI dependencies for authentication.

The session resolver reads the session cookie first and falls back to an
``Authorization: Bearer`` header. It is used by every protected route.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator, Optional

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from api.errors import Unauthorized
from auth.tokens import (
    InvalidSessionToken,
    create_session_token,
    needs_refresh,
    verify_session_token,
)
from config.settings import config
from database.session import get_db_session

logger = logging.getLogger(__name__)


async def db_session(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session for route handlers."""
    yield session


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        config.session_cookie_name,
        token,
        max_age=config.session_expiry_seconds,
        httponly=True,
        secure=not config.debug,
        samesite="lax",
        path="/",
    )


def _extract_token(request: Request) -> Optional[str]:
    token = request.cookies.get(config.session_cookie_name)
    if token:
        return token
    authorization = request.headers.get("authorization", "")
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


def resolve_user_id(request: Request, response: Optional[Response] = None) -> Optional[str]:
    """
    Return the authenticated ``user_id`` or None.

    When the token is close to expiry the cookie is rewritten on ``response``;
    that step is best-effort.
    """
    token = _extract_token(request)
    if not token:
        return None
    try:
        payload = verify_session_token(token)
    except InvalidSessionToken as exc:
        logger.debug("Rejected session token: %s", exc)
        return None

    user_id = payload["user_id"]
    if response is not None and needs_refresh(payload):
        try:
            set_session_cookie(response, create_session_token(user_id))
        except Exception:
            logger.warning("Session cookie refresh failed for %s", user_id, exc_info=True)
    return user_id


async def get_optional_user_id(request: Request, response: Response) -> Optional[str]:
    return resolve_user_id(request, response)


async def get_current_user_id(request: Request, response: Response) -> str:
    """Authenticated ``user_id`` (UUID string); 401 otherwise."""
    user_id = resolve_user_id(request, response)
    if user_id is None:
        raise Unauthorized()
    return user_id
