"""
Google connectors — Gmail, Calendar, Business Profile and Analytics/Search Console.

All four share one OAuth client (``GOOGLE_CLIENT_ID``) and differ by
scopes, redirect URI and where the connection is stored.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping
from urllib.parse import quote

import httpx

from api.errors import BadRequest
from config.settings import config
from connectors.base import BaseConnector, IntegrationConnector, MailAccountConnector
from database.models import StatsIntegration

logger = logging.getLogger(__name__)

# Google OAuth2 endpoints
_GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
_GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
_GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
_GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

_USERINFO_EMAIL = "https://www.googleapis.com/auth/userinfo.email"

STATS_SOURCES = ("site_inrcy", "site_web")
STATS_PRODUCTS = ("ga4", "gsc")


class _GoogleOAuth(BaseConnector):
    """Offline-access authorization + code exchange shared by Google connectors."""

    authorize_url = _GOOGLE_AUTH_URL
    redirect_setting: str = ""

    def client_id(self) -> str:
        return config.google_client_id

    def client_secret(self) -> str:
        return config.google_client_secret

    def redirect_uri(self) -> str:
        return getattr(config, self.redirect_setting) or config.callback_url(self.provider_name)

    def config_names(self) -> Dict[str, str]:
        return {
            "client_id": "GOOGLE_CLIENT_ID",
            "client_secret": "GOOGLE_CLIENT_SECRET",
            "redirect_uri": self.redirect_setting.upper(),
        }

    def extra_auth_params(self) -> Dict[str, str]:
        return {
            "access_type": "offline",        # gets refresh_token
            "prompt": "consent",             # force consent to always get refresh_token
            "include_granted_scopes": "true",
        }

    async def handle_callback(self, code: str) -> Dict[str, Any]:
        """Exchange auth code for tokens and fetch the account email."""
        async with httpx.AsyncClient(timeout=15) as client:
            token_resp = await client.post(
                _GOOGLE_TOKEN_URL,
                data={
                    "code": code,
                    "client_id": self.client_id(),
                    "client_secret": self.client_secret(),
                    "redirect_uri": self.redirect_uri(),
                    "grant_type": "authorization_code",
                },
            )
            token_resp.raise_for_status()
            token_data = token_resp.json()

            headers = {"Authorization": f"Bearer {token_data['access_token']}"}
            user_resp = await client.get(_GOOGLE_USERINFO_URL, headers=headers)
            user_resp.raise_for_status()
            user_info = user_resp.json()

        return {
            "access_token": token_data["access_token"],
            "refresh_token": token_data.get("refresh_token"),
            "expires_in": token_data.get("expires_in", 3600),
            "scopes": token_data.get("scope", "").split(),
            "account_id": user_info.get("id", user_info.get("email", "")),
            "account_label": user_info.get("email", ""),
            "provider_meta": {
                "email": user_info.get("email"),
                "name": user_info.get("name"),
                "picture": user_info.get("picture"),
            },
        }

    async def revoke_token(self, access_token: str) -> bool:
        async with httpx.AsyncClient(timeout=10) as client:
            resp = await client.post(_GOOGLE_REVOKE_URL, params={"token": access_token})
            return resp.status_code == 200


class GmailConnector(_GoogleOAuth, MailAccountConnector):
    mail_provider = "gmail"
    redirect_setting = "google_redirect_uri"
    revoke_on_disconnect = True

    @property
    def provider_name(self) -> str:
        return "google"

    @property
    def display_name(self) -> str:
        return "Gmail"

    @property
    def scopes(self) -> List[str]:
        return ["https://www.googleapis.com/auth/gmail.send", _USERINFO_EMAIL]

    def default_return_path(self, query):
        return "/dashboard?panel=mails"


class GoogleCalendarConnector(_GoogleOAuth, IntegrationConnector):
    tags = {"provider": "google", "category": "calendar"}
    redirect_setting = "google_calendar_redirect_uri"
    requires_account_id = True
    status_requires_auth = True
    revoke_on_disconnect = True

    @property
    def provider_name(self) -> str:
        return "google-calendar"

    @property
    def display_name(self) -> str:
        return "Google Agenda"

    @property
    def scopes(self) -> List[str]:
        return [
            "https://www.googleapis.com/auth/calendar.events",
            "https://www.googleapis.com/auth/calendar.readonly",
            _USERINFO_EMAIL,
        ]

    def default_return_path(self, query):
        return "/dashboard/agenda"

    def status_filters(self, query):
        return {"status": "connected"}


class GoogleBusinessConnector(_GoogleOAuth, IntegrationConnector):
    model = StatsIntegration
    tags = {"provider": "google", "source": "gmb", "product": "gmb"}
    redirect_setting = "google_gmb_redirect_uri"
    settings_key = "gmb"
    disconnected_settings = {"connected": False, "url": "", "resource_id": "", "accountEmail": ""}

    @property
    def provider_name(self) -> str:
        return "google-business"

    @property
    def display_name(self) -> str:
        return "Google Business Profile"

    @property
    def scopes(self) -> List[str]:
        return ["https://www.googleapis.com/auth/business.manage", _USERINFO_EMAIL]

    def default_return_path(self, query):
        return "/dashboard?panel=gmb"


class GoogleStatsConnector(_GoogleOAuth, IntegrationConnector):
    """Analytics (ga4) and Search Console (gsc) for one of the user's sites."""

    model = StatsIntegration
    tags = {"provider": "google"}
    redirect_setting = "google_stats_redirect_uri"
    soft_disconnect = True
    status_requires_auth = True

    @property
    def provider_name(self) -> str:
        return "google-stats"

    @property
    def display_name(self) -> str:
        return "Google Analytics / Search Console"

    @property
    def scopes(self) -> List[str]:
        return [
            "https://www.googleapis.com/auth/analytics.readonly",
            "https://www.googleapis.com/auth/webmasters.readonly",
            _USERINFO_EMAIL,
        ]

    def default_return_path(self, query):
        return f"/dashboard?panel={quote(query.get('source') or '')}"

    def state_extra(self, query: Mapping[str, str]) -> Dict[str, Any]:
        source = query.get("source") or ""
        product = query.get("product") or ""
        if source not in STATS_SOURCES:
            raise BadRequest("Invalid source")
        if product not in STATS_PRODUCTS:
            raise BadRequest("Invalid product")
        return {"source": source, "product": product}

    def state_filters(self, state):
        return {"source": state.get("source"), "product": state.get("product")}

    def _source_product(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        source = values.get("source")
        product = values.get("product")
        if not source or not product:
            raise BadRequest("Missing source/product")
        return {"source": source, "product": product}

    def disconnect_filters(self, body):
        return self._source_product(body)

    def status_filters(self, query):
        return self._source_product(query)

    def status_body(self, record):
        data = None
        if record is not None:
            data = {
                "status": record.status,
                "email_address": record.email_address,
                "expires_at": record.expires_at.isoformat() if record.expires_at else None,
            }
        return {"connected": record is not None and record.status == "connected", "data": data}
