"""Tests for the credential lifecycle manager."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from tether.core.errors import AuthExpired, IntegrationUnavailable, MissingConfigError
from tether.core.secrets import SecretValue
from tether.credentials.manager import CredentialManager, OAuthConfig, SingleFlightGuard
from tether.credentials.models import Credential, InMemoryCredentialStore, TokenGrant


class FakeBroker:
    def __init__(self, *, expires_in: float = 3600, refresh_token: str | None = None, fail: Exception | None = None):
        self.expires_in = expires_in
        self.refresh_token = refresh_token
        self.fail = fail
        self.refreshed_with: list[str] = []
        self.exchanged: list[tuple[str, str | None, list[str]]] = []
        self.revoked: list[str] = []

    async def refresh(self, refresh_token: SecretValue) -> TokenGrant:
        self.refreshed_with.append(refresh_token.get_secret())
        await asyncio.sleep(0)
        if self.fail:
            raise self.fail
        return TokenGrant(
            access_token=SecretValue(f"access-{len(self.refreshed_with)}"),
            expires_in=self.expires_in,
            refresh_token=SecretValue(self.refresh_token) if self.refresh_token else None,
        )

    async def exchange_code(self, code, redirect_uri, scopes):
        self.exchanged.append((code, redirect_uri, scopes))
        return TokenGrant(
            access_token=SecretValue("fresh"),
            expires_in=3600,
            refresh_token=SecretValue("rt-new"),
            account_id="user-1",
        )

    async def revoke(self, account_id: str) -> None:
        self.revoked.append(account_id)


def credential(now, *, expires_in: float, refresh_token: str | None = "rt-1", account_id: str = "user-1"):
    return Credential(
        access_token=SecretValue("access-0"),
        expires_at=now + timedelta(seconds=expires_in),
        refresh_token=SecretValue(refresh_token) if refresh_token else None,
        scopes=("Mail.Send",),
        account_id=account_id,
    )


class TestEnsureValid:
    @pytest.mark.asyncio
    async def test_refreshes_inside_buffer(self, utc_clock):
        # expires at T+180s, buffer 300s, checked at T+10s
        store = InMemoryCredentialStore(credential(utc_clock.now, expires_in=180))
        broker = FakeBroker()
        manager = CredentialManager(store, broker, refresh_buffer=timedelta(seconds=300), clock=utc_clock)
        utc_clock.advance(seconds=10)

        await manager.ensure_valid()

        assert broker.refreshed_with == ["rt-1"]
        assert store.saves == 1
        assert manager.current.access_token.get_secret() == "access-1"
        assert manager.current.expires_at == utc_clock.now + timedelta(seconds=3600)

    @pytest.mark.asyncio
    async def test_keeps_refresh_token_when_none_issued(self, utc_clock):
        store = InMemoryCredentialStore(credential(utc_clock.now, expires_in=60))
        manager = CredentialManager(store, FakeBroker(), clock=utc_clock)
        await manager.ensure_valid()
        saved = await store.get()
        assert saved.refresh_token.get_secret() == "rt-1"
        assert saved.scopes == ("Mail.Send",)
        assert saved.account_id == "user-1"

    @pytest.mark.asyncio
    async def test_rotated_refresh_token_is_stored(self, utc_clock):
        store = InMemoryCredentialStore(credential(utc_clock.now, expires_in=60))
        manager = CredentialManager(store, FakeBroker(refresh_token="rt-2"), clock=utc_clock)
        await manager.ensure_valid()
        assert (await store.get()).refresh_token.get_secret() == "rt-2"

    @pytest.mark.asyncio
    async def test_no_refresh_outside_buffer(self, utc_clock):
        store = InMemoryCredentialStore(credential(utc_clock.now, expires_in=3600))
        broker = FakeBroker()
        manager = CredentialManager(store, broker, clock=utc_clock)
        await manager.ensure_valid()
        assert broker.refreshed_with == []
        assert await manager.access_token() == "access-0"

    @pytest.mark.asyncio
    async def test_boundary_refreshes(self, utc_clock):
        store = InMemoryCredentialStore(credential(utc_clock.now, expires_in=300))
        broker = FakeBroker()
        manager = CredentialManager(store, broker, refresh_buffer=timedelta(seconds=300), clock=utc_clock)
        await manager.ensure_valid()
        assert len(broker.refreshed_with) == 1

    @pytest.mark.asyncio
    async def test_missing_credential(self, utc_clock):
        manager = CredentialManager(InMemoryCredentialStore(), FakeBroker(), clock=utc_clock, name="groupware")
        with pytest.raises(AuthExpired) as exc_info:
            await manager.ensure_valid()
        assert exc_info.value.context.provider == "groupware"

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token(self, utc_clock):
        store = InMemoryCredentialStore(credential(utc_clock.now, expires_in=-60, refresh_token=None))
        broker = FakeBroker()
        manager = CredentialManager(store, broker, clock=utc_clock)
        with pytest.raises(AuthExpired):
            await manager.ensure_valid()
        assert broker.refreshed_with == []

    @pytest.mark.asyncio
    async def test_broker_rejection_propagates(self, utc_clock):
        store = InMemoryCredentialStore(credential(utc_clock.now, expires_in=10))
        manager = CredentialManager(store, FakeBroker(fail=AuthExpired("revoked")), clock=utc_clock)
        with pytest.raises(AuthExpired):
            await manager.ensure_valid()
        assert store.saves == 0

    @pytest.mark.asyncio
    async def test_authorization_header(self, utc_clock):
        store = InMemoryCredentialStore(credential(utc_clock.now, expires_in=3600))
        manager = CredentialManager(store, FakeBroker(), clock=utc_clock)
        assert await manager.authorization_header() == {"Authorization": "Bearer access-0"}


class TestConcurrentRefresh:
    @pytest.mark.asyncio
    async def test_without_single_flight_both_refresh(self, utc_clock):
        store = InMemoryCredentialStore(credential(utc_clock.now, expires_in=10))
        broker = FakeBroker()
        manager = CredentialManager(store, broker, clock=utc_clock)
        await asyncio.gather(manager.ensure_valid(), manager.ensure_valid())
        assert len(broker.refreshed_with) == 2

    @pytest.mark.asyncio
    async def test_single_flight_refreshes_once(self, utc_clock):
        store = InMemoryCredentialStore(credential(utc_clock.now, expires_in=10))
        broker = FakeBroker()
        manager = CredentialManager(store, broker, single_flight=True, clock=utc_clock)
        await asyncio.gather(*(manager.ensure_valid() for _ in range(5)))
        assert len(broker.refreshed_with) == 1

    def test_guard_reuses_locks(self):
        guard = SingleFlightGuard()
        assert guard.lock_for("a") is guard.lock_for("a")
        assert guard.lock_for("a") is not guard.lock_for("b")


class TestAuthorization:
    def test_authorization_url(self):
        oauth = OAuthConfig(client_id="cid", redirect_uri="https://app/callback", tenant="contoso")
        manager = CredentialManager(InMemoryCredentialStore(), FakeBroker(), oauth=oauth)
        url = urlparse(manager.authorization_url(["User.Read", "Mail.Send"], state="xyz"))
        query = parse_qs(url.query)

        assert url.netloc == "login.microsoftonline.com"
        assert url.path == "/contoso/oauth2/v2.0/authorize"
        assert query["client_id"] == ["cid"]
        assert query["scope"] == ["User.Read Mail.Send"]
        assert query["state"] == ["xyz"]
        assert query["response_type"] == ["code"]

    def test_authorization_url_requires_client_id(self):
        manager = CredentialManager(InMemoryCredentialStore(), FakeBroker())
        with pytest.raises(MissingConfigError):
            manager.authorization_url(["User.Read"])

    @pytest.mark.asyncio
    async def test_exchange_code(self, utc_clock):
        store = InMemoryCredentialStore()
        broker = FakeBroker()
        oauth = OAuthConfig(client_id="cid", redirect_uri="https://app/callback")
        manager = CredentialManager(store, broker, oauth=oauth, clock=utc_clock)

        created = await manager.exchange_code("code-123", ["User.Read"])

        assert broker.exchanged == [("code-123", "https://app/callback", ["User.Read"])]
        assert created.account_id == "user-1"
        assert created.scopes == ("User.Read",)
        assert created.expires_at == utc_clock.now + timedelta(hours=1)
        assert await store.get() == created

    @pytest.mark.asyncio
    async def test_revoke(self, utc_clock):
        store = InMemoryCredentialStore(credential(utc_clock.now, expires_in=3600))
        broker = FakeBroker()
        manager = CredentialManager(store, broker, clock=utc_clock)
        await manager.revoke()
        assert broker.revoked == ["user-1"]
        assert await store.get() is None
        assert manager.current is None

    @pytest.mark.asyncio
    async def test_revoke_clears_local_state_when_broker_fails(self, utc_clock):
        class FailingRevokeBroker(FakeBroker):
            async def revoke(self, account_id: str) -> None:
                raise IntegrationUnavailable("broker down")

        store = InMemoryCredentialStore(credential(utc_clock.now, expires_in=3600))
        manager = CredentialManager(store, FailingRevokeBroker(), clock=utc_clock)
        await manager.load()
        with pytest.raises(IntegrationUnavailable):
            await manager.revoke()
        assert await store.get() is None
        assert manager.current is None

    @pytest.mark.asyncio
    async def test_access_token_without_credential(self, utc_clock):
        manager = CredentialManager(InMemoryCredentialStore(), FakeBroker(), clock=utc_clock)
        with pytest.raises(AuthExpired):
            await manager.access_token()


class TestCredentialModel:
    def test_requires_aware_expiry(self):
        from datetime import datetime

        with pytest.raises(ValueError):
            Credential(access_token=SecretValue("x"), expires_at=datetime(2025, 1, 1))

    def test_to_dict_redacts(self, utc_clock):
        data = credential(utc_clock.now, expires_in=60).to_dict()
        assert "access-0" not in str(data)
        assert credential(utc_clock.now, expires_in=60).to_dict(reveal=True)["access_token"] == "access-0"

    def test_round_trip_dict(self, utc_clock):
        original = credential(utc_clock.now, expires_in=60)
        assert Credential.from_dict(original.to_dict(reveal=True)) == original

    def test_grant_from_payload_camel_case(self):
        grant = TokenGrant.from_payload({"accessToken": "a", "expiresIn": 120, "refreshToken": "r"})
        assert grant.access_token.get_secret() == "a"
        assert grant.expires_in == 120.0
        assert grant.refresh_token.get_secret() == "r"

    def test_grant_without_token(self):
        with pytest.raises(ValueError):
            TokenGrant.from_payload({"expires_in": 10})
