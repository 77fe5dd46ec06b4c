"""
MicrosoftConnector — Outlook / Hotmail / Office 365 mailboxes via Microsoft
identity platform v2. The ``common`` tenant accepts personal and work accounts.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx

from config.settings import config
from connectors.base import MailAccountConnector

logger = logging.getLogger(__name__)

_MS_AUTHORITY = "https://login.microsoftonline.com/common/oauth2/v2.0"
_MS_GRAPH_ME = "https://graph.microsoft.com/v1.0/me"


class MicrosoftConnector(MailAccountConnector):
    authorize_url = f"{_MS_AUTHORITY}/authorize"
    mail_provider = "microsoft"

    @property
    def provider_name(self) -> str:
        return "microsoft"

    @property
    def display_name(self) -> str:
        return "Microsoft Outlook"

    @property
    def scopes(self) -> List[str]:
        return [
            "openid",
            "profile",
            "email",
            "offline_access",
            "Mail.Read",
            "Mail.ReadWrite",
            "Mail.Send",
            "User.Read",
        ]

    def default_return_path(self, query):
        return "/dashboard?panel=mails"

    def client_id(self) -> str:
        return config.microsoft_client_id

    def client_secret(self) -> str:
        return config.microsoft_client_secret

    def redirect_uri(self) -> str:
        # no site-url fallback: the URI must match the Azure registration exactly
        return config.microsoft_redirect_uri

    def config_names(self) -> Dict[str, str]:
        return {
            "client_id": "MICROSOFT_CLIENT_ID",
            "client_secret": "MICROSOFT_CLIENT_SECRET",
            "redirect_uri": "MICROSOFT_REDIRECT_URI",
        }

    def extra_auth_params(self) -> Dict[str, str]:
        return {"response_mode": "query"}

    async def handle_callback(self, code: str) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=15) as client:
            token_resp = await client.post(
                f"{_MS_AUTHORITY}/token",
                data={
                    "client_id": self.client_id(),
                    "client_secret": self.client_secret(),
                    "code": code,
                    "redirect_uri": self.redirect_uri(),
                    "grant_type": "authorization_code",
                    "scope": " ".join(self.scopes),
                },
            )
            token_resp.raise_for_status()
            token_data = token_resp.json()

            me_resp = await client.get(
                _MS_GRAPH_ME,
                headers={"Authorization": f"Bearer {token_data['access_token']}"},
            )
            me_resp.raise_for_status()
            me = me_resp.json()

        email = me.get("mail") or me.get("userPrincipalName") or ""
        return {
            "access_token": token_data["access_token"],
            "refresh_token": token_data.get("refresh_token"),
            "expires_in": token_data.get("expires_in", 3600),
            "scopes": token_data.get("scope", "").split(),
            "account_id": me.get("id", ""),
            "account_label": email,
            "provider_meta": {"email": email, "name": me.get("displayName")},
        }
