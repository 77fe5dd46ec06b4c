"""
BaseConnector — the capability interface every integration provider implements.

A connector knows how to build its authorization request, exchange the
callback code, persist the connection, disconnect it and report its status.
Routes dispatch to connectors through the registry instead of repeating the
same handler per provider.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from api.errors import BadRequest
from connectors.encryption import decrypt_token, encrypt_token
from database.helpers import (
    delete_records,
    fetch_latest,
    list_records,
    parse_record_id,
    save_record,
    serialize_records,
    sync_tool_settings,
    update_records,
)
from database.models import Integration, MailAccount

logger = logging.getLogger(__name__)


def expiry_from(token_data: Mapping[str, Any]) -> Optional[datetime]:
    expires_in = token_data.get("expires_in")
    if not expires_in:
        return None
    return datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))


class BaseConnector(ABC):
    """Abstract base for all integration connectors."""

    authorize_url: str = ""
    scope_separator: str = " "
    supports_oauth: bool = True
    requires_account_id: bool = False
    status_requires_auth: bool = False
    supports_selection: bool = False

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Route slug: 'google-calendar', 'linkedin', …"""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        ...

    @property
    def scopes(self) -> List[str]:
        return []

    def default_return_path(self, query: Mapping[str, str]) -> str:
        return "/dashboard"

    # ── Configuration ───────────────────────────────────────────────────

    def client_id(self) -> str:
        return ""

    def client_secret(self) -> str:
        return ""

    def redirect_uri(self) -> str:
        return ""

    def config_names(self) -> Dict[str, str]:
        """Env names for client id / secret / redirect URI."""
        return {}

    def missing_config(self, *, for_callback: bool = False) -> List[str]:
        """Env names needed to start (or finish) the flow that are empty."""
        if not self.supports_oauth:
            return []
        names = self.config_names()
        checks = [("client_id", self.client_id()), ("redirect_uri", self.redirect_uri())]
        if for_callback:
            checks.append(("client_secret", self.client_secret()))
        return [names.get(key, key.upper()) for key, value in checks if not value]

    def is_configured(self) -> bool:
        return not self.missing_config(for_callback=True)

    # ── OAuth flow ──────────────────────────────────────────────────────

    def extra_auth_params(self) -> Dict[str, str]:
        return {}

    def state_extra(self, query: Mapping[str, str]) -> Dict[str, Any]:
        """Validated values carried through the state (e.g. stats source)."""
        return {}

    def build_authorization_request(self, state: str) -> str:
        """Full provider authorization URL for ``state``."""
        params = {
            "client_id": self.client_id(),
            "redirect_uri": self.redirect_uri(),
            "response_type": "code",
            "scope": self.scope_separator.join(self.scopes),
            "state": state,
        }
        params.update(self.extra_auth_params())
        return f"{self.authorize_url}?{urlencode(params)}"

    async def handle_callback(self, code: str) -> Dict[str, Any]:
        """
        Exchange the authorization code for tokens.

        Returns a dict with keys: access_token, refresh_token, expires_in,
        scopes, account_id, account_label, provider_meta
        """
        raise NotImplementedError(f"{self.provider_name} has no OAuth callback")

    async def revoke_token(self, access_token: str) -> bool:
        """Revoke at the provider. Returns False if unsupported."""
        return False

    # ── Resource selection ──────────────────────────────────────────────

    async def list_resources(self, session: AsyncSession, user_id: str) -> List[Dict[str, Any]]:
        """Pages/profiles the linked account can attach, as ``{id, name}``."""
        raise NotImplementedError(f"{self.provider_name} has no resource selection")

    async def select_resource(
        self, session: AsyncSession, user_id: str, body: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """Attach one listed resource to the user's connection."""
        raise NotImplementedError(f"{self.provider_name} has no resource selection")

    # ── Record lifecycle ────────────────────────────────────────────────

    @abstractmethod
    async def store_connection(
        self,
        session: AsyncSession,
        user_id: str,
        token_data: Dict[str, Any],
        state: Dict[str, Any],
    ) -> Any:
        ...

    @abstractmethod
    async def disconnect(self, session: AsyncSession, user_id: str, body: Mapping[str, Any]) -> int:
        """Remove the user's connection. Returns the number of affected rows."""
        ...

    @abstractmethod
    async def get_status(
        self, session: AsyncSession, user_id: str, query: Mapping[str, str]
    ) -> Dict[str, Any]:
        ...

    def _account_id(self, body: Mapping[str, Any]):
        raw = str(body.get("accountId") or "").strip()
        if not raw:
            raise BadRequest("Missing accountId")
        return raw

    async def _revoke_quietly(self, records: List[Any]) -> None:
        for record in records:
            token = decrypt_token(getattr(record, "access_token_enc", None))
            if not token:
                continue
            try:
                await self.revoke_token(token)
            except Exception:
                logger.warning("%s token revocation failed", self.provider_name, exc_info=True)


class IntegrationConnector(BaseConnector):
    """Connector backed by an ``integrations``-shaped table, one account per tag set."""

    model = Integration
    tags: Dict[str, str] = {}
    connected_status: str = "connected"
    soft_disconnect: bool = False
    revoke_on_disconnect: bool = False
    settings_key: Optional[str] = None
    disconnected_settings: Dict[str, Any] = {}

    def record_filters(self, extra: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        filters = dict(self.tags)
        filters.update(extra or {})
        return filters

    def disconnect_filters(self, body: Mapping[str, Any]) -> Dict[str, Any]:
        return {}

    def status_filters(self, query: Mapping[str, str]) -> Dict[str, Any]:
        return {}

    def disconnected_values(self) -> Dict[str, Any]:
        return {
            "status": "disconnected",
            "access_token_enc": None,
            "refresh_token_enc": None,
            "expires_at": None,
        }

    def connection_values(self, token_data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "status": self.connected_status,
            "resource_id": token_data.get("account_id") or None,
            "resource_label": token_data.get("account_label") or None,
            "email_address": (token_data.get("provider_meta") or {}).get("email"),
            "meta": token_data.get("provider_meta") or {},
            "access_token_enc": encrypt_token(token_data.get("access_token")),
            "refresh_token_enc": encrypt_token(token_data.get("refresh_token")),
            "expires_at": expiry_from(token_data),
        }

    def state_filters(self, state: Mapping[str, Any]) -> Dict[str, Any]:
        return {}

    async def store_connection(self, session, user_id, token_data, state):
        record = await save_record(
            session,
            self.model,
            user_id,
            match=self.record_filters(self.state_filters(state)),
            values=self.connection_values(token_data),
        )
        logger.info("Connected %s for user %s", self.provider_name, user_id)
        return record

    async def disconnect(self, session, user_id, body):
        filters = self.record_filters(self.disconnect_filters(body))
        record_id = None
        if self.requires_account_id:
            record_id = parse_record_id(self._account_id(body))
            if record_id is None:
                # not a record id, so nothing owned by this user can match
                return 0

        if self.revoke_on_disconnect:
            records = await list_records(session, self.model, user_id, **filters)
            if record_id is not None:
                records = [r for r in records if r.id == record_id]
            await self._revoke_quietly(records)

        if self.soft_disconnect:
            count = await update_records(
                session, self.model, user_id, self.disconnected_values(), record_id, **filters
            )
        else:
            count = await delete_records(session, self.model, user_id, record_id, **filters)

        if self.settings_key:
            await sync_tool_settings(session, user_id, self.settings_key, self.disconnected_settings)

        logger.info("Disconnected %s for user %s (%d row(s))", self.provider_name, user_id, count)
        return count

    def status_body(self, record: Any) -> Dict[str, Any]:
        return {"connected": record is not None and record.status == "connected"}

    async def get_status(self, session, user_id, query):
        record = await fetch_latest(
            session, self.model, user_id, **self.record_filters(self.status_filters(query))
        )
        return self.status_body(record)

    async def _linked_record(self, session, user_id):
        record = await fetch_latest(session, self.model, user_id, **self.record_filters())
        if (
            record is None
            or record.status not in ("account_connected", "connected")
            or not record.access_token_enc
        ):
            raise BadRequest(f"{self.display_name} account not connected")
        return record

    async def _apply_selection(
        self,
        session: AsyncSession,
        user_id: str,
        record: Any,
        values: Dict[str, Any],
        settings: Dict[str, Any],
    ) -> int:
        count = await update_records(
            session, self.model, user_id, values, record.id, **self.record_filters()
        )
        if self.settings_key:
            await sync_tool_settings(session, user_id, self.settings_key, settings)
        logger.info(
            "Selected %s resource %s for user %s", self.provider_name, values.get("resource_id"), user_id
        )
        return count


class MailAccountConnector(BaseConnector):
    """Connector backed by ``mail_accounts``; a user may link several accounts."""

    model = MailAccount
    mail_provider: str = ""
    requires_account_id = True
    revoke_on_disconnect: bool = False

    account_fields = ["id", "provider", "email_address", "display_name", "status", "created_at"]

    async def store_connection(self, session, user_id, token_data, state):
        meta = token_data.get("provider_meta") or {}
        email = token_data.get("account_label") or meta.get("email")
        if not email:
            raise BadRequest("Mailbox has no email address")
        record = await save_record(
            session,
            self.model,
            user_id,
            match={"provider": self.mail_provider, "email_address": email},
            values={
                "display_name": meta.get("name"),
                "status": "connected",
                "access_token_enc": encrypt_token(token_data.get("access_token")),
                "refresh_token_enc": encrypt_token(token_data.get("refresh_token")),
                "expires_at": expiry_from(token_data),
                "meta": meta,
            },
        )
        logger.info("Connected %s mailbox for user %s", self.mail_provider, user_id)
        return record

    async def disconnect(self, session, user_id, body):
        record_id = parse_record_id(self._account_id(body))
        if record_id is None:
            return 0
        if self.revoke_on_disconnect:
            records = await list_records(session, self.model, user_id, provider=self.mail_provider)
            await self._revoke_quietly([r for r in records if r.id == record_id])
        count = await delete_records(
            session, self.model, user_id, record_id, provider=self.mail_provider
        )
        logger.info("Disconnected %s mailbox for user %s (%d row(s))", self.mail_provider, user_id, count)
        return count

    async def get_status(self, session, user_id, query):
        rows = await list_records(session, self.model, user_id, provider=self.mail_provider)
        return {
            "connected": any(r.status == "connected" for r in rows),
            "accounts": serialize_records(rows, self.account_fields),
        }
