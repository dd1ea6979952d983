"""Tests for the broker function clients."""

from __future__ import annotations

import httpx
import pytest

from conftest import json_response, request_json
from tether.core.errors import AuthExpired, ClientError, IntegrationUnavailable
from tether.core.secrets import SecretValue
from tether.credentials.broker import BrokerClient, OAuthBroker
from tether.execution.retry import RetryPolicy
from tether.execution.transport import TransportClient

BROKER = "https://broker.test/functions/v1"


@pytest.fixture
def broker_client(router, fake_sleep):
    transport = TransportClient(BROKER, provider="broker", transport=router.transport())
    return BrokerClient(transport, retry=RetryPolicy(2, sleep=fake_sleep))


class TestBrokerClient:
    @pytest.mark.asyncio
    async def test_invoke_posts_to_function(self, router, broker_client):
        router.add("POST", f"{BROKER}/banking-auth", json_response({"apiKey": "k"}))
        assert await broker_client.invoke("banking-auth", {"action": "get_api_key"}) == {"apiKey": "k"}
        assert request_json(router.requests[0]) == {"action": "get_api_key"}

    @pytest.mark.asyncio
    async def test_empty_body_is_empty_dict(self, router, broker_client):
        router.add("POST", f"{BROKER}/f", httpx.Response(204))
        assert await broker_client.invoke("f", {}) == {}

    @pytest.mark.asyncio
    async def test_non_object_payload_rejected(self, router, broker_client):
        router.add("POST", f"{BROKER}/f", json_response([1, 2]))
        with pytest.raises(ClientError):
            await broker_client.invoke("f", {})

    @pytest.mark.asyncio
    async def test_transient_failures_exhaust(self, router, broker_client):
        router.add("POST", f"{BROKER}/f", httpx.Response(503))
        with pytest.raises(IntegrationUnavailable):
            await broker_client.invoke("f", {})
        assert len(router.requests) == 2


class TestOAuthBroker:
    @pytest.mark.asyncio
    async def test_refresh(self, router, broker_client):
        router.add(
            "POST",
            f"{BROKER}/groupware-auth",
            json_response({"access_token": "new", "expires_in": 1800, "refresh_token": "rt-2"}),
        )
        broker = OAuthBroker(broker_client, function="groupware-auth")
        grant = await broker.refresh(SecretValue("rt-1"))

        assert grant.access_token.get_secret() == "new"
        assert grant.expires_in == 1800
        assert request_json(router.requests[0]) == {"action": "refresh_token", "refreshToken": "rt-1"}

    @pytest.mark.asyncio
    async def test_exchange_code(self, router, broker_client):
        router.add("POST", f"{BROKER}/groupware-auth", json_response({"access_token": "a", "account_id": "u1"}))
        broker = OAuthBroker(broker_client, function="groupware-auth")
        grant = await broker.exchange_code("c0de", "https://app/cb", ["User.Read"])

        assert grant.account_id == "u1"
        assert request_json(router.requests[0]) == {
            "action": "exchange_code",
            "code": "c0de",
            "redirectUri": "https://app/cb",
            "scopes": ["User.Read"],
        }

    @pytest.mark.asyncio
    async def test_rejection_is_auth_expired(self, router, broker_client):
        router.add("POST", f"{BROKER}/groupware-auth", json_response({"error": "invalid_grant"}, status=400))
        broker = OAuthBroker(broker_client, function="groupware-auth")
        with pytest.raises(AuthExpired) as exc_info:
            await broker.refresh(SecretValue("revoked"))
        assert isinstance(exc_info.value.__cause__, ClientError)
        assert len(router.requests) == 1

    @pytest.mark.asyncio
    async def test_missing_token_is_auth_expired(self, router, broker_client):
        router.add("POST", f"{BROKER}/groupware-auth", json_response({"expires_in": 10}))
        broker = OAuthBroker(broker_client, function="groupware-auth")
        with pytest.raises(AuthExpired):
            await broker.refresh(SecretValue("rt"))

    @pytest.mark.asyncio
    async def test_revoke(self, router, broker_client):
        router.add("POST", f"{BROKER}/groupware-auth", json_response({"revoked": True}))
        await OAuthBroker(broker_client, function="groupware-auth").revoke("u1")
        assert request_json(router.requests[0]) == {"action": "revoke_token", "accountId": "u1"}
