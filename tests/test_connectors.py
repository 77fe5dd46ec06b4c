"""
Tests for connectors — authorization URLs, config checks, disconnect/status
dispatch and the registry.
"""

import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlsplit

import pytest

from api.errors import BadRequest
from config.settings import config
from connectors.google import GmailConnector, GoogleCalendarConnector, GoogleStatsConnector
from connectors.imap import ImapConnector
from connectors.linkedin import LinkedInConnector
from connectors.meta import FacebookConnector, InstagramConnector
from connectors.microsoft import MicrosoftConnector
from connectors.registry import ConnectorRegistry
from database.models import Integration, MailAccount, StatsIntegration


def _query(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


@pytest.fixture
def google_configured():
    with patch.object(config, "google_client_id", "gid"), \
         patch.object(config, "google_client_secret", "gsecret"), \
         patch.object(config, "site_url", "https://app.example.com"):
        yield


# ── Authorization requests ─────────────────────────────────────────────────────


class TestAuthorizationRequest:
    def test_google_calendar_offline_consent(self, google_configured):
        url = GoogleCalendarConnector().build_authorization_request("st")
        params = _query(url)
        assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
        assert params["client_id"] == "gid"
        assert params["access_type"] == "offline"
        assert params["prompt"] == "consent"
        assert params["state"] == "st"
        assert params["redirect_uri"] == "https://app.example.com/api/integrations/google-calendar/callback"
        assert "https://www.googleapis.com/auth/calendar.events" in params["scope"].split(" ")

    def test_explicit_redirect_uri_wins(self, google_configured):
        with patch.object(config, "google_redirect_uri", "https://cb.example.com/gmail"):
            params = _query(GmailConnector().build_authorization_request("st"))
        assert params["redirect_uri"] == "https://cb.example.com/gmail"

    def test_meta_scopes_are_comma_separated(self):
        with patch.object(config, "facebook_app_id", "fbid"), \
             patch.object(config, "site_url", "https://app.example.com"):
            params = _query(InstagramConnector().build_authorization_request("st"))
        assert "instagram_basic" in params["scope"].split(",")

    def test_microsoft_uses_query_response_mode(self):
        with patch.object(config, "microsoft_client_id", "ms"), \
             patch.object(config, "microsoft_redirect_uri", "https://app.example.com/ms/cb"):
            params = _query(MicrosoftConnector().build_authorization_request("st"))
        assert params["response_mode"] == "query"
        assert "offline_access" in params["scope"].split(" ")


class TestMissingConfig:
    def test_linkedin_reports_env_names(self):
        with patch.object(config, "linkedin_client_id", ""), \
             patch.object(config, "linkedin_redirect_uri", ""), \
             patch.object(config, "site_url", ""):
            assert LinkedInConnector().missing_config() == ["LINKEDIN_CLIENT_ID", "LINKEDIN_REDIRECT_URI"]

    def test_secret_only_needed_for_callback(self, google_configured):
        with patch.object(config, "google_client_secret", ""):
            conn = GoogleCalendarConnector()
            assert conn.missing_config() == []
            assert conn.missing_config(for_callback=True) == ["GOOGLE_CLIENT_SECRET"]

    def test_microsoft_has_no_site_url_fallback(self):
        with patch.object(config, "microsoft_client_id", "ms"), \
             patch.object(config, "microsoft_redirect_uri", ""), \
             patch.object(config, "site_url", "https://app.example.com"):
            assert "MICROSOFT_REDIRECT_URI" in MicrosoftConnector().missing_config()

    def test_imap_needs_nothing(self):
        assert ImapConnector().missing_config(for_callback=True) == []


class TestStatsStateExtra:
    def test_valid_source_and_product(self):
        extra = GoogleStatsConnector().state_extra({"source": "site_web", "product": "ga4"})
        assert extra == {"source": "site_web", "product": "ga4"}

    def test_invalid_source(self):
        with pytest.raises(BadRequest, match="Invalid source"):
            GoogleStatsConnector().state_extra({"source": "elsewhere", "product": "ga4"})

    def test_invalid_product(self):
        with pytest.raises(BadRequest, match="Invalid product"):
            GoogleStatsConnector().state_extra({"source": "site_inrcy", "product": "ads"})


# ── Disconnect ─────────────────────────────────────────────────────────────────


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_calendar_requires_account_id(self):
        with pytest.raises(BadRequest, match="Missing accountId"):
            await GoogleCalendarConnector().disconnect(MagicMock(), str(uuid.uuid4()), {})

    @pytest.mark.asyncio
    async def test_calendar_non_uuid_account_is_noop(self):
        with patch("connectors.base.delete_records", new_callable=AsyncMock) as delete:
            count = await GoogleCalendarConnector().disconnect(MagicMock(), str(uuid.uuid4()), {"accountId": "abc"})
        assert count == 0
        delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_calendar_deletes_owned_row_and_revokes(self):
        uid, rid = str(uuid.uuid4()), uuid.uuid4()
        record = SimpleNamespace(id=rid, access_token_enc="tok")
        conn = GoogleCalendarConnector()
        with patch("connectors.base.list_records", new_callable=AsyncMock, return_value=[record]), \
             patch("connectors.base.delete_records", new_callable=AsyncMock, return_value=1) as delete, \
             patch.object(conn, "revoke_token", new_callable=AsyncMock) as revoke:
            count = await conn.disconnect(MagicMock(), uid, {"accountId": str(rid)})
        assert count == 1
        revoke.assert_awaited_once_with("tok")
        args, kwargs = delete.call_args
        assert args[1] is Integration
        assert args[2] == uid
        assert args[3] == rid
        assert kwargs == {"provider": "google", "category": "calendar"}

    @pytest.mark.asyncio
    async def test_revocation_failure_does_not_block(self):
        rid = uuid.uuid4()
        conn = GoogleCalendarConnector()
        with patch("connectors.base.list_records", new_callable=AsyncMock,
                   return_value=[SimpleNamespace(id=rid, access_token_enc="tok")]), \
             patch("connectors.base.delete_records", new_callable=AsyncMock, return_value=1), \
             patch.object(conn, "revoke_token", new_callable=AsyncMock, side_effect=RuntimeError("down")):
            assert await conn.disconnect(MagicMock(), str(uuid.uuid4()), {"accountId": str(rid)}) == 1

    @pytest.mark.asyncio
    async def test_linkedin_soft_disconnect_and_settings_sync(self):
        uid = str(uuid.uuid4())
        with patch("connectors.base.update_records", new_callable=AsyncMock, return_value=1) as update, \
             patch("connectors.base.delete_records", new_callable=AsyncMock) as delete, \
             patch("connectors.base.sync_tool_settings", new_callable=AsyncMock, return_value=True) as sync:
            await LinkedInConnector().disconnect(MagicMock(), uid, {})
        delete.assert_not_awaited()
        values = update.call_args[0][3]
        assert values["status"] == "disconnected"
        assert values["access_token_enc"] is None
        assert values["refresh_token_enc"] is None
        assert sync.call_args[0][2] == "linkedin"
        assert sync.call_args[0][3]["accountConnected"] is False

    @pytest.mark.asyncio
    async def test_stats_requires_source_and_product(self):
        with pytest.raises(BadRequest, match="Missing source/product"):
            await GoogleStatsConnector().disconnect(MagicMock(), str(uuid.uuid4()), {"source": "site_web"})

    @pytest.mark.asyncio
    async def test_stats_soft_disconnect_is_scoped(self):
        with patch("connectors.base.update_records", new_callable=AsyncMock, return_value=1) as update:
            await GoogleStatsConnector().disconnect(
                MagicMock(), str(uuid.uuid4()), {"source": "site_web", "product": "gsc"}
            )
        args, kwargs = update.call_args
        assert args[1] is StatsIntegration
        assert kwargs == {"provider": "google", "source": "site_web", "product": "gsc"}
        assert args[3]["status"] == "disconnected"
        assert args[3]["access_token_enc"] is None
        assert args[3]["refresh_token_enc"] is None

    @pytest.mark.asyncio
    async def test_mailbox_delete_is_provider_scoped(self):
        rid = uuid.uuid4()
        with patch("connectors.base.delete_records", new_callable=AsyncMock, return_value=1) as delete:
            await ImapConnector().disconnect(MagicMock(), str(uuid.uuid4()), {"accountId": str(rid)})
        args, kwargs = delete.call_args
        assert args[1] is MailAccount
        assert args[3] == rid
        assert kwargs == {"provider": "imap"}

    @pytest.mark.asyncio
    async def test_stats_store_without_source_never_widens(self):
        session = MagicMock()
        session.execute = AsyncMock()
        with pytest.raises(ValueError):
            await GoogleStatsConnector().store_connection(
                session, str(uuid.uuid4()), {"access_token": "a"}, {"n": "n", "product": "ga4"}
            )
        session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_imap_is_not_linked_through_oauth(self):
        conn = ImapConnector()
        assert conn.supports_oauth is False
        with pytest.raises(NotImplementedError):
            await conn.store_connection(MagicMock(), str(uuid.uuid4()), {}, {})


# ── Status ─────────────────────────────────────────────────────────────────────


def _record(**fields):
    defaults = dict(status="connected", resource_id=None, resource_label=None, meta={},
                    email_address=None, expires_at=None)
    defaults.update(fields)
    return SimpleNamespace(**defaults)


class TestStatus:
    @pytest.mark.asyncio
    async def test_linkedin_connected(self):
        record = _record(resource_label="Ada Lovelace", meta={"profile_url": "https://linkedin.com/in/ada"})
        with patch("connectors.base.fetch_latest", new_callable=AsyncMock, return_value=record):
            body = await LinkedInConnector().get_status(MagicMock(), str(uuid.uuid4()), {})
        assert body == {
            "connected": True,
            "accountConnected": True,
            "display_name": "Ada Lovelace",
            "profile_url": "https://linkedin.com/in/ada",
        }

    @pytest.mark.asyncio
    async def test_linkedin_without_record(self):
        with patch("connectors.base.fetch_latest", new_callable=AsyncMock, return_value=None):
            body = await LinkedInConnector().get_status(MagicMock(), str(uuid.uuid4()), {})
        assert body["connected"] is False
        assert body["display_name"] is None

    def test_facebook_account_without_page(self):
        body = FacebookConnector().status_body(_record(status="account_connected"))
        assert body["accountConnected"] is True
        assert body["pageConnected"] is False
        assert body["connected"] is False

    def test_instagram_profile_url(self):
        body = InstagramConnector().status_body(_record(resource_id="ig1", resource_label="shop"))
        assert body["connected"] is True
        assert body["profile_url"] == "https://www.instagram.com/shop/"

    @pytest.mark.asyncio
    async def test_mailboxes_listed(self):
        rows = [MailAccount(id=uuid.uuid4(), provider="microsoft", email_address="a@b.c", status="connected")]
        with patch("connectors.base.list_records", new_callable=AsyncMock, return_value=rows):
            body = await MicrosoftConnector().get_status(MagicMock(), str(uuid.uuid4()), {})
        assert body["connected"] is True
        assert body["accounts"][0]["email_address"] == "a@b.c"


# ── Resource selection ─────────────────────────────────────────────────────────


_PAGES = [
    {"id": "111", "name": "Bakery", "access_token": "page-token-111"},
    {"id": "222", "name": "Florist", "access_token": "page-token-222"},
]


def _linked(status="account_connected", **fields):
    defaults = dict(id=uuid.uuid4(), status=status, access_token_enc="user-token",
                    meta={"user_email": "owner@example.com"}, resource_id=None, resource_label=None)
    defaults.update(fields)
    return SimpleNamespace(**defaults)


class TestResourceSelection:
    @pytest.mark.asyncio
    async def test_facebook_lists_pages_without_tokens(self):
        conn = FacebookConnector()
        with patch("connectors.base.fetch_latest", new_callable=AsyncMock, return_value=_linked()), \
             patch.object(conn, "_fetch_pages", new_callable=AsyncMock, return_value=_PAGES) as fetch:
            resources = await conn.list_resources(MagicMock(), str(uuid.uuid4()))
        assert resources == [{"id": "111", "name": "Bakery"}, {"id": "222", "name": "Florist"}]
        fetch.assert_awaited_once_with("user-token")

    @pytest.mark.asyncio
    async def test_facebook_select_page_connects(self):
        uid = str(uuid.uuid4())
        record = _linked()
        conn = FacebookConnector()
        with patch("connectors.base.fetch_latest", new_callable=AsyncMock, return_value=record), \
             patch("connectors.base.update_records", new_callable=AsyncMock, return_value=1) as update, \
             patch("connectors.base.sync_tool_settings", new_callable=AsyncMock, return_value=True) as sync, \
             patch.object(conn, "_fetch_pages", new_callable=AsyncMock, return_value=_PAGES):
            body = await conn.select_resource(MagicMock(), uid, {"pageId": "222"})

        assert body == {"ok": True, "pageUrl": "https://www.facebook.com/222"}
        args, kwargs = update.call_args
        assert args[1] is Integration
        assert args[2] == uid
        assert args[4] == record.id
        assert kwargs == {"provider": "facebook", "source": "facebook", "product": "facebook"}
        values = args[3]
        assert values["status"] == "connected"
        assert values["resource_id"] == "222"
        assert values["resource_label"] == "Florist"
        assert values["meta"]["user_email"] == "owner@example.com"
        assert values["meta"]["user_token_enc"]
        assert sync.call_args[0][2] == "facebook"
        assert sync.call_args[0][3]["pageConnected"] is True

        selected = _linked(status="connected", resource_id="222", resource_label="Florist",
                           meta=values["meta"])
        status = conn.status_body(selected)
        assert status["connected"] is True
        assert status["pageConnected"] is True

    @pytest.mark.asyncio
    async def test_facebook_unknown_page(self):
        conn = FacebookConnector()
        with patch("connectors.base.fetch_latest", new_callable=AsyncMock, return_value=_linked()), \
             patch("connectors.base.update_records", new_callable=AsyncMock) as update, \
             patch.object(conn, "_fetch_pages", new_callable=AsyncMock, return_value=_PAGES):
            with pytest.raises(BadRequest, match="Unknown page"):
                await conn.select_resource(MagicMock(), str(uuid.uuid4()), {"pageId": "999"})
        update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_select_requires_linked_account(self):
        with patch("connectors.base.fetch_latest", new_callable=AsyncMock, return_value=None):
            with pytest.raises(BadRequest, match="not connected"):
                await FacebookConnector().select_resource(MagicMock(), str(uuid.uuid4()), {"pageId": "111"})

    @pytest.mark.asyncio
    async def test_select_requires_page_id(self):
        with pytest.raises(BadRequest, match="Missing pageId"):
            await FacebookConnector().select_resource(MagicMock(), str(uuid.uuid4()), {})

    @pytest.mark.asyncio
    async def test_instagram_select_profile(self):
        conn = InstagramConnector()
        with patch("connectors.base.fetch_latest", new_callable=AsyncMock, return_value=_linked()), \
             patch("connectors.base.update_records", new_callable=AsyncMock, return_value=1) as update, \
             patch("connectors.base.sync_tool_settings", new_callable=AsyncMock, return_value=True) as sync, \
             patch.object(conn, "_fetch_pages", new_callable=AsyncMock, return_value=_PAGES), \
             patch.object(conn, "_instagram_account", new_callable=AsyncMock,
                          return_value={"id": "ig-9", "username": "florist"}):
            body = await conn.select_resource(MagicMock(), str(uuid.uuid4()), {"pageId": "222"})

        assert body == {"ok": True, "username": "florist", "profileUrl": "https://www.instagram.com/florist/"}
        values = update.call_args[0][3]
        assert values["resource_id"] == "ig-9"
        assert values["meta"]["page_id"] == "222"
        assert sync.call_args[0][3]["igId"] == "ig-9"
        assert conn.status_body(_linked(status="connected", resource_id="ig-9", resource_label="florist"))["connected"]

    @pytest.mark.asyncio
    async def test_instagram_page_without_business_account(self):
        conn = InstagramConnector()
        with patch("connectors.base.fetch_latest", new_callable=AsyncMock, return_value=_linked()), \
             patch("connectors.base.update_records", new_callable=AsyncMock) as update, \
             patch.object(conn, "_fetch_pages", new_callable=AsyncMock, return_value=_PAGES), \
             patch.object(conn, "_instagram_account", new_callable=AsyncMock, return_value={}):
            with pytest.raises(BadRequest, match="No Instagram business account"):
                await conn.select_resource(MagicMock(), str(uuid.uuid4()), {"pageId": "111"})
        update.assert_not_awaited()

    def test_only_meta_connectors_select(self):
        assert FacebookConnector().supports_selection
        assert InstagramConnector().supports_selection
        assert not LinkedInConnector().supports_selection
        assert not GmailConnector().supports_selection


# ── Registry ───────────────────────────────────────────────────────────────────


class TestConnectorRegistry:
    def setup_method(self):
        ConnectorRegistry.reset()

    def test_all_slugs_registered(self):
        registry = ConnectorRegistry()
        slugs = {p["provider"] for p in registry.list_providers()}
        assert slugs == {
            "google", "google-calendar", "google-business", "google-stats",
            "facebook", "instagram", "messenger", "linkedin", "microsoft", "imap",
        }

    def test_singleton(self):
        assert ConnectorRegistry() is ConnectorRegistry()

    def test_unknown_slug(self):
        assert ConnectorRegistry().get("myspace") is None

    def test_report_lists_unconfigured(self):
        with patch.object(config, "linkedin_client_id", ""):
            assert "linkedin" in ConnectorRegistry().report()
        assert "imap" not in ConnectorRegistry().report()
