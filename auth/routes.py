"""
Auth-provider callback — turns the emailed/PKCE code into a session cookie.

Route prefix: /api/auth
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Query
from fastapi.responses import RedirectResponse

from auth.dependencies import set_session_cookie
from auth.tokens import InvalidSessionToken, verify_session_token
from connectors.state import safe_return_path

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

_NEXT_BY_TYPE = {
    "invite": "/set-password?mode=invite",
    "recovery": "/set-password?mode=reset",
}


def _login_redirect(**params: str) -> RedirectResponse:
    query = urlencode(params)
    return RedirectResponse(url=f"/login?{query}" if query else "/login", status_code=302)


@router.get("/callback")
async def auth_callback(
    code: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    next: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_code: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
) -> RedirectResponse:
    err = error or error_code
    if err:
        params = {"error": err}
        if error_description:
            params["error_description"] = error_description
        return _login_redirect(**params)

    if not code:
        return _login_redirect()

    try:
        payload = verify_session_token(code)
    except InvalidSessionToken as exc:
        logger.info("Auth callback rejected: %s", exc)
        return _login_redirect(error="auth")

    inferred = _NEXT_BY_TYPE.get(type or "", "/dashboard")
    response = RedirectResponse(url=safe_return_path(next, inferred), status_code=302)
    set_session_cookie(response, code)
    logger.info("Session established for %s", payload["user_id"])
    return response
