"""Tests for the HTTP surface."""

from __future__ import annotations

import hashlib
import hmac
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import json_response
from tether.api import create_app
from tether.core.settings import TetherSettings
from tether.fiscal.contingency import InMemoryContingencyStore
from tether.hub import IntegrationHub
from tether.integrations.banking import InMemoryBankingRepository

PUBLIC_URL = "https://registry.test/api"
BROKER = "https://broker.test"
SECRET = "s3cret"


@pytest.fixture
def repo():
    return InMemoryBankingRepository()


@pytest.fixture
def make_api(router, fake_sleep, repo):
    def _make(**overrides):
        settings = TetherSettings(
            _env_file=None,
            registry_public_url=PUBLIC_URL,
            broker_url=BROKER,
            banking_api_url="https://api.bank.test",
            banking_webhook_secret=SECRET,
            **overrides,
        )
        hub = IntegrationHub(
            settings,
            http_transport=router.transport(),
            sleep=fake_sleep,
            contingency_store=InMemoryContingencyStore(),
            banking_repository=repo,
        )
        return TestClient(create_app(hub))

    return _make


def signed(body: dict) -> tuple[bytes, dict[str, str]]:
    raw = json.dumps(body).encode()
    digest = hmac.new(SECRET.encode(), raw, hashlib.sha256).hexdigest()
    return raw, {"X-Signature": digest, "Content-Type": "application/json"}


class TestHealthEndpoint:
    def test_healthy(self, make_api):
        with make_api() as api:
            response = api.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["integrations"]["registry"]["status"] == "connected"

    def test_owner_scope_adds_banking(self, make_api):
        with make_api() as api:
            body = api.get("/health", params={"owner": "owner-1"}).json()
        assert body["integrations"]["banking"]["status"] == "disconnected"
        assert body["status"] == "degraded"

    def test_unhealthy_is_503(self, make_api, router):
        router.add("GET", f"{PUBLIC_URL}/produto/1020300000001", httpx.Response(503))
        with make_api() as api:
            response = api.get("/health")
        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"


class TestRegistryEndpoint:
    def test_lookup(self, make_api, router):
        router.add(
            "GET",
            f"{PUBLIC_URL}/produto/1012345678901",
            json_response({"nomeProduto": "Dipirona", "situacao": "Ativo"}),
        )
        with make_api() as api:
            response = api.get("/registry/10.123.4567.890-1")
        assert response.status_code == 200
        assert response.json()["valid"] is True
        assert response.json()["provider"] == "registry.public"

    def test_outage_is_problem_503(self, make_api, router):
        router.add("GET", f"{PUBLIC_URL}/produto/1012345678901", httpx.Response(502))
        with make_api() as api:
            response = api.get("/registry/1012345678901")
        assert response.status_code == 503
        problem = response.json()
        assert problem["title"] == "IntegrationUnavailable"
        assert problem["category"] == "NETWORK"
        assert problem["detail"] == "Integration unavailable. Try again later."
        assert problem["provider"] == "registry.public"

    def test_outage_detail_hides_upstream_endpoint(self, make_api, router):
        router.add("GET", f"{PUBLIC_URL}/produto/1012345678901", httpx.Response(503))
        with make_api() as api:
            response = api.get("/registry/1012345678901")
        assert response.status_code == 503
        assert "registry.test" not in response.text
        assert "/produto/" not in response.text

    def test_upstream_rejection_is_502(self, make_api, router):
        router.add("GET", f"{PUBLIC_URL}/produto/1012345678901", json_response({"error": "x"}, status=400))
        with make_api() as api:
            response = api.get("/registry/1012345678901")
        assert response.status_code == 502
        problem = response.json()
        assert problem["category"] == "CLIENT"
        assert problem["detail"] == "The upstream integration rejected the request."
        assert "registry.test" not in problem["detail"]


class TestContingencyEndpoints:
    def test_enable_get_disable(self, make_api):
        with make_api() as api:
            enabled = api.post(
                "/fiscal/owner-1/contingency",
                json={"contingency_type": "SVC-AN", "reason": "authority offline"},
            )
            again = api.post(
                "/fiscal/owner-1/contingency",
                json={"contingency_type": "DPEC", "reason": "other"},
            )
            current = api.get("/fiscal/owner-1/contingency")
            disabled = api.delete("/fiscal/owner-1/contingency")
            disabled_again = api.delete("/fiscal/owner-1/contingency")
            after = api.get("/fiscal/owner-1/contingency")

        assert enabled.json()["changed"] is True
        assert enabled.json()["contingency_type"] == "SVC-AN"
        assert again.json()["changed"] is False
        assert again.json()["contingency_type"] == "SVC-AN"
        assert current.json()["active"] is True
        assert len(current.json()["history"]) == 1
        assert disabled.json()["changed"] is True
        assert disabled_again.json()["changed"] is False
        assert after.json()["active"] is False
        assert after.json()["history"][0]["ended_at"] is not None

    def test_invalid_type_rejected(self, make_api):
        with make_api() as api:
            response = api.post("/fiscal/o/contingency", json={"contingency_type": "OFFLINE", "reason": "x"})
        assert response.status_code == 422

    def test_empty_reason_rejected(self, make_api):
        with make_api() as api:
            response = api.post("/fiscal/o/contingency", json={"contingency_type": "DPEC", "reason": ""})
        assert response.status_code == 422


class TestBankingWebhook:
    def test_valid_signature(self, make_api, repo):
        repo.add_connection("owner-1", "item-1")
        raw, headers = signed({"event": "item/login_required", "itemId": "item-1", "data": {"code": "LOGIN"}})
        with make_api() as api:
            response = api.post("/webhooks/banking", content=raw, headers=headers)
        assert response.status_code == 200
        assert response.json() == {"received": True, "event": "item/login_required", "action": "login_required"}
        assert repo.connections["item-1"].status == "login_required"

    def test_invalid_signature_is_401(self, make_api, repo):
        raw, headers = signed({"event": "item/deleted", "itemId": "item-1"})
        headers["X-Signature"] = "0" * 64
        with make_api() as api:
            response = api.post("/webhooks/banking", content=raw, headers=headers)
        assert response.status_code == 401
        assert response.json()["title"] == "WebhookSignatureError"
        assert "item-1" not in repo.connections

    def test_missing_signature_is_401(self, make_api):
        with make_api() as api:
            response = api.post("/webhooks/banking", json={"event": "item/deleted", "itemId": "i"})
        assert response.status_code == 401

    def test_malformed_body_is_422(self, make_api):
        raw, headers = signed({"event": "item/updated"})
        with make_api() as api:
            response = api.post("/webhooks/banking", content=raw, headers=headers)
        assert response.status_code == 422

    def test_not_configured_is_503(self, router, fake_sleep):
        hub = IntegrationHub(
            TetherSettings(_env_file=None, registry_public_url=PUBLIC_URL),
            http_transport=router.transport(),
            sleep=fake_sleep,
        )
        with TestClient(create_app(hub)) as api:
            response = api.post("/webhooks/banking", json={"event": "item/updated", "itemId": "i"})
        assert response.status_code == 503
