"""
Meta connectors — Facebook pages, Instagram business profiles, Messenger inbox.

All use the Facebook login dialog with one Meta app (``FACEBOOK_APP_ID``);
Meta expects comma-separated scopes.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping
from urllib.parse import quote

import httpx

from api.errors import BadRequest
from config.settings import config
from connectors.base import BaseConnector, IntegrationConnector
from connectors.encryption import decrypt_token, encrypt_token

logger = logging.getLogger(__name__)

_GRAPH_VERSION = "v20.0"
_META_AUTH_URL = f"https://www.facebook.com/{_GRAPH_VERSION}/dialog/oauth"
_META_GRAPH = f"https://graph.facebook.com/{_GRAPH_VERSION}"


class _MetaOAuth(BaseConnector):
    authorize_url = _META_AUTH_URL
    scope_separator = ","
    redirect_setting: str = ""

    def client_id(self) -> str:
        return config.facebook_app_id

    def client_secret(self) -> str:
        return config.facebook_app_secret

    def redirect_uri(self) -> str:
        return getattr(config, self.redirect_setting) or config.callback_url(self.provider_name)

    def config_names(self) -> Dict[str, str]:
        return {
            "client_id": "FACEBOOK_APP_ID",
            "client_secret": "FACEBOOK_APP_SECRET",
            "redirect_uri": self.redirect_setting.upper(),
        }

    async def handle_callback(self, code: str) -> Dict[str, Any]:
        """Exchange the code for a user token and read the Meta profile."""
        async with httpx.AsyncClient(timeout=15) as client:
            token_resp = await client.get(
                f"{_META_GRAPH}/oauth/access_token",
                params={
                    "client_id": self.client_id(),
                    "client_secret": self.client_secret(),
                    "redirect_uri": self.redirect_uri(),
                    "code": code,
                },
            )
            token_resp.raise_for_status()
            token_data = token_resp.json()
            if "error" in token_data:
                raise ValueError(f"Meta OAuth error: {token_data['error'].get('message', 'unknown')}")

            me_resp = await client.get(
                f"{_META_GRAPH}/me",
                params={"fields": "id,name,email", "access_token": token_data["access_token"]},
            )
            me_resp.raise_for_status()
            me = me_resp.json()

        return {
            "access_token": token_data["access_token"],
            "refresh_token": None,
            "expires_in": token_data.get("expires_in"),
            "scopes": self.scopes,
            "account_id": str(me.get("id", "")),
            "account_label": me.get("name", ""),
            "provider_meta": {"user_email": me.get("email"), "name": me.get("name")},
        }

    # ── Page selection ──────────────────────────────────────────────────

    def _user_token(self, record) -> str:
        # after a page is picked the row holds the page token; the user token moves to meta
        meta = record.meta or {}
        return decrypt_token(meta.get("user_token_enc") or record.access_token_enc) or ""

    def _page_id(self, body: Mapping[str, Any]) -> str:
        page_id = str(body.get("pageId") or "").strip()
        if not page_id:
            raise BadRequest("Missing pageId")
        return page_id

    async def _fetch_pages(self, user_token: str) -> List[Dict[str, Any]]:
        """Pages the Meta user manages, with their page access tokens."""
        async with httpx.AsyncClient(timeout=15) as client:
            resp = await client.get(
                f"{_META_GRAPH}/me/accounts",
                params={"fields": "id,name,access_token", "access_token": user_token},
            )
            resp.raise_for_status()
            data = resp.json()
        return [p for p in data.get("data") or [] if p.get("id")]

    async def _find_page(self, user_token: str, page_id: str) -> Dict[str, Any]:
        for page in await self._fetch_pages(user_token):
            if str(page["id"]) == page_id and page.get("access_token"):
                return page
        raise BadRequest("Unknown page")

    async def list_resources(self, session, user_id):
        record = await self._linked_record(session, user_id)
        pages = await self._fetch_pages(self._user_token(record))
        # page tokens stay server-side
        return [{"id": str(p["id"]), "name": p.get("name")} for p in pages]

    def selected_settings(self, page_id: str, page_name: Any, page_url: str) -> Dict[str, Any]:
        return {}

    async def select_resource(self, session, user_id, body):
        page_id = self._page_id(body)
        record = await self._linked_record(session, user_id)
        user_token = self._user_token(record)
        page = await self._find_page(user_token, page_id)
        page_url = f"https://www.facebook.com/{page_id}"

        await self._apply_selection(
            session,
            user_id,
            record,
            {
                "status": "connected",
                "resource_id": page_id,
                "resource_label": page.get("name"),
                "access_token_enc": encrypt_token(page["access_token"]),
                "meta": {
                    **(record.meta or {}),
                    "user_token_enc": encrypt_token(user_token),
                    "page_url": page_url,
                    "selected": True,
                },
            },
            self.selected_settings(page_id, page.get("name"), page_url),
        )
        return {"ok": True, "pageUrl": page_url}


class FacebookConnector(_MetaOAuth, IntegrationConnector):
    tags = {"provider": "facebook", "source": "facebook", "product": "facebook"}
    redirect_setting = "facebook_redirect_uri"
    # the page is picked after the account is linked
    connected_status = "account_connected"
    supports_selection = True
    settings_key = "facebook"
    disconnected_settings = {
        "accountConnected": False,
        "pageConnected": False,
        "userEmail": None,
        "pageId": None,
        "pageName": None,
        "url": None,
    }

    @property
    def provider_name(self) -> str:
        return "facebook"

    @property
    def display_name(self) -> str:
        return "Facebook"

    @property
    def scopes(self) -> List[str]:
        # pages_show_list is needed to list pages for selection
        return ["public_profile", "email", "pages_show_list"]

    def default_return_path(self, query):
        return "/dashboard?panel=facebook"

    def selected_settings(self, page_id, page_name, page_url):
        return {
            "accountConnected": True,
            "pageConnected": True,
            "pageId": page_id,
            "pageName": page_name,
            "url": page_url,
        }

    def connection_values(self, token_data):
        values = super().connection_values(token_data)
        # account id is the Meta user, not a page
        values["resource_id"] = None
        values["resource_label"] = None
        return values

    def status_body(self, record):
        meta = (record.meta if record is not None else None) or {}
        status = record.status if record is not None else None
        account_connected = status in ("account_connected", "connected")
        page_connected = status == "connected" and bool(record.resource_id)
        return {
            "status": status,
            "accountConnected": account_connected,
            "pageConnected": page_connected,
            "connected": page_connected,
            "resource_id": record.resource_id if record is not None else None,
            "resource_label": record.resource_label if record is not None else None,
            "page_url": meta.get("page_url"),
            "user_email": meta.get("user_email"),
        }


class InstagramConnector(_MetaOAuth, IntegrationConnector):
    tags = {"provider": "instagram", "source": "instagram", "product": "instagram"}
    redirect_setting = "instagram_redirect_uri"
    connected_status = "account_connected"
    supports_selection = True
    settings_key = "instagram"
    disconnected_settings = {
        "accountConnected": False,
        "connected": False,
        "username": None,
        "url": None,
        "pageId": None,
        "igId": None,
    }

    @property
    def provider_name(self) -> str:
        return "instagram"

    @property
    def display_name(self) -> str:
        return "Instagram"

    @property
    def scopes(self) -> List[str]:
        return [
            "public_profile",
            "email",
            "pages_show_list",
            "pages_read_engagement",
            "instagram_basic",
            "instagram_content_publish",
            "business_management",
        ]

    def default_return_path(self, query):
        return "/dashboard?panel=instagram"

    def connection_values(self, token_data):
        values = super().connection_values(token_data)
        values["resource_id"] = None
        values["resource_label"] = None
        return values

    async def _instagram_account(self, user_token: str, page_id: str) -> Dict[str, Any]:
        """The Instagram business account attached to a Facebook page, or {}."""
        async with httpx.AsyncClient(timeout=15) as client:
            resp = await client.get(
                f"{_META_GRAPH}/{quote(page_id)}",
                params={"fields": "instagram_business_account{username,id}", "access_token": user_token},
            )
            resp.raise_for_status()
            data = resp.json()
        return data.get("instagram_business_account") or {}

    async def select_resource(self, session, user_id, body):
        page_id = self._page_id(body)
        record = await self._linked_record(session, user_id)
        user_token = self._user_token(record)
        page = await self._find_page(user_token, page_id)

        account = await self._instagram_account(user_token, page_id)
        ig_id = str(account.get("id") or "")
        if not ig_id:
            raise BadRequest("No Instagram business account on this page")
        username = account.get("username") or None
        profile_url = f"https://www.instagram.com/{username}/" if username else None

        await self._apply_selection(
            session,
            user_id,
            record,
            {
                "status": "connected",
                "resource_id": ig_id,
                "resource_label": username,
                "access_token_enc": encrypt_token(page["access_token"]),
                "meta": {
                    **(record.meta or {}),
                    "user_token_enc": encrypt_token(user_token),
                    "page_id": page_id,
                    "page_name": page.get("name"),
                },
            },
            {
                "accountConnected": True,
                "connected": True,
                "username": username,
                "url": profile_url,
                "pageId": page_id,
                "igId": ig_id,
            },
        )
        return {"ok": True, "username": username, "profileUrl": profile_url}

    def status_body(self, record):
        status = record.status if record is not None else None
        username = (record.resource_label if record is not None else None) or ""
        return {
            "accountConnected": status in ("account_connected", "connected"),
            "connected": status == "connected" and bool(record.resource_id),
            "username": username or None,
            "profile_url": f"https://www.instagram.com/{username}/" if username else None,
        }


class MessengerConnector(_MetaOAuth, IntegrationConnector):
    tags = {"provider": "messenger", "category": "inbox"}
    redirect_setting = "messenger_redirect_uri"
    supports_selection = True

    @property
    def provider_name(self) -> str:
        return "messenger"

    @property
    def display_name(self) -> str:
        return "Messenger"

    @property
    def scopes(self) -> List[str]:
        return [
            "pages_show_list",
            "pages_messaging",
            "pages_manage_metadata",
            "pages_read_engagement",
        ]

    def default_return_path(self, query):
        return "/dashboard?panel=mails"

    def status_body(self, record):
        return {
            "connected": record is not None and record.status == "connected",
            "page_name": record.resource_label if record is not None else None,
        }
