"""
LinkedInConnector — OpenID Connect sign-in + member posting.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx

from config.settings import config
from connectors.base import IntegrationConnector

logger = logging.getLogger(__name__)

_LI_AUTH_URL = "https://www.linkedin.com/oauth/v2/authorization"
_LI_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
_LI_USERINFO_URL = "https://api.linkedin.com/v2/userinfo"


class LinkedInConnector(IntegrationConnector):
    authorize_url = _LI_AUTH_URL
    tags = {"provider": "linkedin", "source": "linkedin", "product": "linkedin"}
    soft_disconnect = True
    settings_key = "linkedin"
    disconnected_settings = {"accountConnected": False, "connected": False, "url": None}

    @property
    def provider_name(self) -> str:
        return "linkedin"

    @property
    def display_name(self) -> str:
        return "LinkedIn"

    @property
    def scopes(self) -> List[str]:
        # organization scopes need extra LinkedIn approval
        return ["openid", "profile", "email", "w_member_social"]

    def default_return_path(self, query):
        return "/dashboard?panel=linkedin"

    def client_id(self) -> str:
        return config.linkedin_client_id

    def client_secret(self) -> str:
        return config.linkedin_client_secret

    def redirect_uri(self) -> str:
        return config.linkedin_redirect_uri or config.callback_url(self.provider_name)

    def config_names(self) -> Dict[str, str]:
        return {
            "client_id": "LINKEDIN_CLIENT_ID",
            "client_secret": "LINKEDIN_CLIENT_SECRET",
            "redirect_uri": "LINKEDIN_REDIRECT_URI",
        }

    async def handle_callback(self, code: str) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=15) as client:
            token_resp = await client.post(
                _LI_TOKEN_URL,
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "client_id": self.client_id(),
                    "client_secret": self.client_secret(),
                    "redirect_uri": self.redirect_uri(),
                },
                headers={"Accept": "application/json"},
            )
            token_resp.raise_for_status()
            token_data = token_resp.json()

            user_resp = await client.get(
                _LI_USERINFO_URL,
                headers={"Authorization": f"Bearer {token_data['access_token']}"},
            )
            user_resp.raise_for_status()
            user = user_resp.json()

        return {
            "access_token": token_data["access_token"],
            "refresh_token": token_data.get("refresh_token"),
            "expires_in": token_data.get("expires_in"),
            "scopes": token_data.get("scope", "").split(","),
            "account_id": user.get("sub", ""),
            "account_label": user.get("name", ""),
            "provider_meta": {
                "email": user.get("email"),
                "picture": user.get("picture"),
                "profile_url": user.get("profile") or None,
            },
        }

    def status_body(self, record):
        connected = record is not None and record.status == "connected"
        meta = (record.meta if record is not None else None) or {}
        return {
            "connected": connected,
            "accountConnected": connected,
            "display_name": (record.resource_label if record is not None else None) or None,
            "profile_url": meta.get("profile_url"),
        }
