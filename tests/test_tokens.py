"""Credential storage and access-token lifecycle"""
import httpx
import pytest

from conftest import ACCOUNT, link_account
from playlist_sync.db.models import OAuthCredential
from playlist_sync.services.access_tokens import NotLinkedError, RefreshFailedError, TokenManager
from playlist_sync.services.google_oauth import GoogleOAuthError, refresh_access_token
from playlist_sync.services.tokens import CredentialStore

NOW = 1_700_000_000_000


class RecordingRefresher:
    def __init__(self, response=None, error=None):
        self.response = response or {"access_token": "access-2", "expires_at_ms": NOW + 3_600_000}
        self.error = error
        self.calls = []

    async def __call__(self, refresh_token):
        self.calls.append(refresh_token)
        if self.error:
            raise self.error
        return self.response


class TestCredentialStore:
    def test_tokens_are_encrypted_at_rest(self, db_session):
        link_account(db_session, access_token="plain-access", refresh_token="plain-refresh")
        row = db_session.query(OAuthCredential).one()
        assert "plain-access" not in row.access_token_enc
        assert "plain-refresh" not in row.refresh_token_enc

        cred = CredentialStore(db_session).get(ACCOUNT)
        assert cred.access_token == "plain-access"
        assert cred.refresh_token == "plain-refresh"

    def test_relink_without_refresh_token_keeps_the_old_one(self, db_session):
        link_account(db_session, refresh_token="refresh-original")
        CredentialStore(db_session).save(ACCOUNT, access_token="access-new", refresh_token=None, expires_at_ms=5)

        cred = CredentialStore(db_session).get(ACCOUNT)
        assert cred.access_token == "access-new"
        assert cred.refresh_token == "refresh-original"
        assert cred.expires_at_ms == 5

    def test_new_account_requires_refresh_token(self, db_session):
        with pytest.raises(ValueError):
            CredentialStore(db_session).save("new@example.com", access_token="a", refresh_token=None, expires_at_ms=1)

    def test_delete_and_latest_account(self, db_session):
        store = CredentialStore(db_session)
        assert store.latest_account_id() is None
        link_account(db_session, "first@example.com")
        link_account(db_session, "second@example.com")
        assert store.latest_account_id() == "second@example.com"

        assert store.delete("second@example.com") is True
        assert store.delete("second@example.com") is False
        assert store.latest_account_id() == "first@example.com"


class TestTokenManager:
    @pytest.mark.asyncio
    async def test_unlinked_account_raises(self, db_session):
        manager = TokenManager(CredentialStore(db_session), refresher=RecordingRefresher(), clock=lambda: NOW)
        with pytest.raises(NotLinkedError):
            await manager.ensure_valid_credential("nobody@example.com")

    @pytest.mark.asyncio
    async def test_valid_token_is_returned_without_refresh(self, db_session):
        link_account(db_session, expires_at_ms=NOW + 10 * 60_000)
        refresher = RecordingRefresher()
        manager = TokenManager(CredentialStore(db_session), refresher=refresher, clock=lambda: NOW)

        cred = await manager.ensure_valid_credential(ACCOUNT)

        assert cred.access_token == "access-1"
        assert refresher.calls == []

    @pytest.mark.asyncio
    async def test_token_inside_safety_margin_is_refreshed_and_persisted(self, db_session):
        link_account(db_session, expires_at_ms=NOW + 10_000)
        refresher = RecordingRefresher()
        manager = TokenManager(CredentialStore(db_session), refresher=refresher, clock=lambda: NOW,
                               safety_margin_ms=30_000)

        cred = await manager.ensure_valid_credential(ACCOUNT)

        assert refresher.calls == ["refresh-1"]
        assert cred.access_token == "access-2"
        stored = CredentialStore(db_session).get(ACCOUNT)
        assert stored.access_token == "access-2"
        assert stored.expires_at_ms == NOW + 3_600_000
        assert stored.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed(self, db_session):
        link_account(db_session, expires_at_ms=NOW)
        refresher = RecordingRefresher()
        manager = TokenManager(CredentialStore(db_session), refresher=refresher, clock=lambda: NOW,
                               safety_margin_ms=0)

        assert (await manager.ensure_valid_credential(ACCOUNT)).access_token == "access-2"

    @pytest.mark.asyncio
    async def test_rejected_refresh_is_fatal_and_leaves_store_untouched(self, db_session):
        link_account(db_session, expires_at_ms=NOW - 1)
        refresher = RecordingRefresher(error=GoogleOAuthError("refresh failed: 400 invalid_grant", 400))
        manager = TokenManager(CredentialStore(db_session), refresher=refresher, clock=lambda: NOW)

        with pytest.raises(RefreshFailedError):
            await manager.ensure_valid_credential(ACCOUNT)
        assert len(refresher.calls) == 1
        assert CredentialStore(db_session).get(ACCOUNT).access_token == "access-1"


class TestRefreshExchange:
    @pytest.mark.asyncio
    async def test_refresh_returns_absolute_expiry(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert b"grant_type=refresh_token" in request.content
            return httpx.Response(200, json={"access_token": "fresh", "expires_in": 3599, "token_type": "Bearer"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            out = await refresh_access_token("refresh-1", client=http)

        assert out["access_token"] == "fresh"
        assert out["expires_at_ms"] > 3_599_000

    @pytest.mark.asyncio
    async def test_refresh_rejection_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "invalid_grant"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            with pytest.raises(GoogleOAuthError) as exc:
                await refresh_access_token("revoked", client=http)
        assert exc.value.status_code == 400
