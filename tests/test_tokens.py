"""
Tests for session tokens and the session resolver.
"""

import time
import uuid
from unittest.mock import patch

import pytest
from fastapi import Response
from starlette.requests import Request

from auth.dependencies import get_current_user_id, resolve_user_id
from auth.tokens import (
    InvalidSessionToken,
    create_session_token,
    needs_refresh,
    verify_session_token,
)
from api.errors import Unauthorized
from config.settings import config


def _request(cookie: str = None, bearer: str = None) -> Request:
    headers = []
    if cookie is not None:
        headers.append((b"cookie", f"{config.session_cookie_name}={cookie}".encode()))
    if bearer is not None:
        headers.append((b"authorization", f"Bearer {bearer}".encode()))
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers})


class TestSessionTokens:
    def test_roundtrip_returns_user_id(self):
        uid = str(uuid.uuid4())
        payload = verify_session_token(create_session_token(uid))
        assert payload["user_id"] == uid
        assert payload["exp"] - payload["iat"] == config.session_expiry_seconds

    def test_tampered_signature_rejected(self):
        token = create_session_token(str(uuid.uuid4()))
        encoded, sig = token.split(".", 1)
        forged = encoded + "." + ("0" if sig[0] != "0" else "1") + sig[1:]
        with pytest.raises(InvalidSessionToken):
            verify_session_token(forged)

    def test_expired_token_rejected(self):
        old = time.time() - config.session_expiry_seconds - 10
        token = create_session_token(str(uuid.uuid4()), now=old)
        with pytest.raises(InvalidSessionToken, match="expired"):
            verify_session_token(token)

    def test_non_uuid_subject_rejected(self):
        with pytest.raises(InvalidSessionToken):
            verify_session_token(create_session_token("not-a-uuid"))

    def test_garbage_rejected(self):
        with pytest.raises(InvalidSessionToken):
            verify_session_token("no-dot-here")

    def test_missing_secret_rejects_everything(self):
        token = create_session_token(str(uuid.uuid4()))
        with patch.object(config, "session_secret", ""):
            with pytest.raises(InvalidSessionToken):
                verify_session_token(token)

    def test_needs_refresh_in_last_quarter(self):
        now = time.time()
        fresh = {"exp": now + config.session_expiry_seconds}
        stale = {"exp": now + config.session_expiry_seconds / 10}
        assert needs_refresh(fresh, now=now) is False
        assert needs_refresh(stale, now=now) is True


class TestSessionResolver:
    def test_no_credentials(self):
        assert resolve_user_id(_request()) is None

    def test_bearer_header(self):
        uid = str(uuid.uuid4())
        assert resolve_user_id(_request(bearer=create_session_token(uid))) == uid

    def test_cookie_wins_over_header(self):
        cookie_uid, header_uid = str(uuid.uuid4()), str(uuid.uuid4())
        req = _request(cookie=create_session_token(cookie_uid), bearer=create_session_token(header_uid))
        assert resolve_user_id(req) == cookie_uid

    def test_invalid_token_is_anonymous(self):
        assert resolve_user_id(_request(bearer="junk.token")) is None

    def test_refreshes_cookie_near_expiry(self):
        uid = str(uuid.uuid4())
        issued = time.time() - config.session_expiry_seconds * 0.9
        response = Response()
        assert resolve_user_id(_request(cookie=create_session_token(uid, now=issued)), response) == uid
        assert config.session_cookie_name in response.headers.get("set-cookie", "")

    def test_refresh_failure_does_not_fail_request(self):
        uid = str(uuid.uuid4())
        issued = time.time() - config.session_expiry_seconds * 0.9
        with patch("auth.dependencies.set_session_cookie", side_effect=RuntimeError("boom")):
            assert resolve_user_id(_request(cookie=create_session_token(uid, now=issued)), Response()) == uid

    @pytest.mark.asyncio
    async def test_current_user_raises_unauthorized(self):
        with pytest.raises(Unauthorized):
            await get_current_user_id(_request(), Response())
