"""
Integration API routes — OAuth start/callback, disconnect, status.

Route prefix: /api/integrations
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from api.errors import BadRequest, ConfigurationMissing, NotFound, UpstreamError
from auth.dependencies import db_session, get_current_user_id, get_optional_user_id
from connectors.base import BaseConnector
from connectors.registry import ConnectorRegistry
from connectors.state import InvalidState, consume_state, issue_state, safe_return_path
from database.helpers import StoreError, fetch_latest, list_records, serialize_records
from database.models import Integration, MailAccount

logger = logging.getLogger(__name__)

router = APIRouter(tags=["integrations"])

MAX_MAIL_ACCOUNTS = 4
_RETURN_TO_MAX = 512


def _connector(provider: str, *, oauth: bool = False, selectable: bool = False) -> BaseConnector:
    connector = ConnectorRegistry().get(provider)
    if (
        connector is None
        or (oauth and not connector.supports_oauth)
        or (selectable and not connector.supports_selection)
    ):
        raise NotFound(f"Unknown integration '{provider}'")
    return connector


async def read_json_body(request: Request) -> Dict[str, Any]:
    """Request body as a dict; empty or malformed bodies read as ``{}``."""
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _with_params(path: str, **params: str) -> str:
    parts = urlsplit(path)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((k, v) for k, v in params.items() if v is not None)
    return urlunsplit(("", "", parts.path, urlencode(query), parts.fragment))


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers() -> list[dict]:
    """Available integrations and whether this deployment configured them."""
    return ConnectorRegistry().list_providers()


@router.get("/status")
async def integrations_overview(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Mailboxes and Messenger page linked by the user."""
    mail_accounts = await list_records(session, MailAccount, user_id)
    messenger = await fetch_latest(session, Integration, user_id, provider="messenger", category="inbox")
    return {
        "mailAccounts": serialize_records(
            mail_accounts,
            ["id", "provider", "email_address", "display_name", "status", "created_at"],
        ),
        "messengerAccount": (
            serialize_records([messenger], ["id", "resource_id", "resource_label", "status", "created_at"])[0]
            if messenger is not None
            else None
        ),
        "limits": {"maxMailAccounts": MAX_MAIL_ACCOUNTS},
    }


@router.get("/{provider}/start")
async def start_oauth(
    provider: str,
    request: Request,
    returnTo: Optional[str] = Query(None),
    user_id: Optional[str] = Depends(get_optional_user_id),
    session: AsyncSession = Depends(db_session),
) -> RedirectResponse:
    """
    Redirect the browser to the provider's consent screen.

    Fails closed with a 500 JSON body when the client id or redirect URI is
    not configured.
    """
    connector = _connector(provider, oauth=True)
    missing = connector.missing_config()
    if missing:
        raise ConfigurationMissing(f"Missing {', '.join(missing)}")

    query = request.query_params
    extra = connector.state_extra(query)
    return_to = (returnTo or connector.default_return_path(query))[:_RETURN_TO_MAX]

    state = await issue_state(session, connector.provider_name, user_id, return_to, extra)
    url = connector.build_authorization_request(state)
    logger.info("OAuth start: provider=%s user=%s", provider, user_id or "-")
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


@router.get("/{provider}/callback")
async def oauth_callback(
    provider: str,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    user_id: Optional[str] = Depends(get_optional_user_id),
    session: AsyncSession = Depends(db_session),
) -> RedirectResponse:
    """
    Provider redirects here after consent.

    Verifies the state, exchanges the code, stores the connection and sends
    the browser back to the page that started the flow.
    """
    connector = _connector(provider, oauth=True)
    if user_id is None:
        return RedirectResponse(url="/login?error=auth", status_code=status.HTTP_302_FOUND)
    if not state:
        raise BadRequest("Missing state")

    try:
        payload = await consume_state(session, state, connector.provider_name, user_id)
    except InvalidState as exc:
        logger.warning("OAuth callback rejected for %s/%s: %s", provider, user_id, exc)
        raise BadRequest("Invalid state")

    return_to = safe_return_path(payload.get("r"), connector.default_return_path(payload))

    def _back(ok: bool, **params: str) -> RedirectResponse:
        url = _with_params(return_to, linked=provider, ok="1" if ok else "0", **params)
        return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)

    if error or not code:
        message = (error_description or "")[:200] or None
        return _back(False, reason=error or "missing_code", message=message)

    if connector.missing_config(for_callback=True):
        logger.error("OAuth callback for %s but connector is not configured", provider)
        return _back(False, reason="not_configured")

    try:
        token_data = await connector.handle_callback(code)
    except (httpx.HTTPError, ValueError, KeyError) as exc:
        logger.error("OAuth token exchange failed for %s: %s", provider, exc)
        return _back(False, reason="exchange_failed")

    await connector.store_connection(session, user_id, token_data, payload)
    logger.info("OAuth connected: user=%s provider=%s account=%s", user_id, provider, token_data.get("account_label"))
    return _back(True)


@router.post("/{provider}/disconnect")
async def disconnect_integration(
    provider: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Delete (or mark disconnected) the user's connection. Idempotent."""
    connector = _connector(provider)
    body = await read_json_body(request)
    await connector.disconnect(session, user_id, body)
    return {"ok": True}


@router.get("/{provider}/resources")
async def list_integration_resources(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Pages/profiles the linked account can attach."""
    connector = _connector(provider, selectable=True)
    try:
        resources = await connector.list_resources(session, user_id)
    except (httpx.HTTPError, ValueError) as exc:
        logger.error("Listing %s resources failed for %s: %s", provider, user_id, exc)
        raise UpstreamError()
    return {"resources": resources}


@router.post("/{provider}/select")
async def select_integration_resource(
    provider: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Attach a page/profile to the user's connection; status becomes ``connected``."""
    connector = _connector(provider, selectable=True)
    body = await read_json_body(request)
    try:
        return await connector.select_resource(session, user_id, body)
    except (httpx.HTTPError, ValueError) as exc:
        logger.error("Selecting %s resource failed for %s: %s", provider, user_id, exc)
        raise UpstreamError()


@router.get("/{provider}/status")
async def integration_status(
    provider: str,
    request: Request,
    user_id: Optional[str] = Depends(get_optional_user_id),
    session: AsyncSession = Depends(db_session),
):
    """
    Connection state for the dashboard widgets.

    Never fails on auth or store errors: the widget just shows "disconnected".
    """
    connector = _connector(provider)
    if user_id is None:
        code = status.HTTP_401_UNAUTHORIZED if connector.status_requires_auth else status.HTTP_200_OK
        return JSONResponse(status_code=code, content={"connected": False})
    try:
        return await connector.get_status(session, user_id, request.query_params)
    except StoreError:
        return {"connected": False}
