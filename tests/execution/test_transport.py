"""Tests for TransportClient error classification and payload decoding."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import httpx
import pytest

from conftest import json_response, request_json
from tether.core.errors import ClientError, NetworkError, RateLimited, ServerError, Timeout
from tether.execution.transport import IntegrationRequest, TransportClient, decode_payload, parse_retry_after

BASE = "https://authority.test/api"


def make_client(router, **kwargs) -> TransportClient:
    return TransportClient(BASE, provider="registry.public", transport=router.transport(), **kwargs)


class TestParseRetryAfter:
    def test_seconds(self):
        assert parse_retry_after("12") == 12.0

    def test_negative_clamped(self):
        assert parse_retry_after("-3") == 0.0

    def test_http_date(self):
        now = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)
        assert parse_retry_after("Mon, 10 Mar 2025 12:00:30 GMT", now=now) == 30.0

    def test_missing_or_garbage(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None
        assert parse_retry_after("soon") is None


class TestDecodePayload:
    def test_json(self):
        assert decode_payload(httpx.Response(200, json={"a": 1})) == {"a": 1}

    def test_text(self):
        response = httpx.Response(200, text="hello", headers={"content-type": "text/plain"})
        assert decode_payload(response) == "hello"

    def test_empty_body(self):
        assert decode_payload(httpx.Response(204)) is None

    def test_broken_json_falls_back_to_text(self):
        response = httpx.Response(200, content=b"{nope", headers={"content-type": "application/json"})
        assert decode_payload(response) == "{nope"


class TestTransportClient:
    @pytest.mark.asyncio
    async def test_get_returns_json(self, router):
        router.add("GET", f"{BASE}/produto/1", json_response({"name": "Dipirona"}))
        async with make_client(router) as client:
            assert await client.get("/produto/1") == {"name": "Dipirona"}

    @pytest.mark.asyncio
    async def test_post_sends_json_and_params(self, router):
        router.add("POST", f"{BASE}/items", json_response({"id": "x"}, status=201))
        async with make_client(router) as client:
            await client.post("items", json={"k": "v"}, params={"page": "2"})
        sent = router.calls("POST", f"{BASE}/items")[0]
        assert request_json(sent) == {"k": "v"}
        assert sent.url.params["page"] == "2"

    @pytest.mark.asyncio
    async def test_raw_content_wins_over_json(self, router):
        router.add("PUT", f"{BASE}/upload", json_response({"ok": True}))
        async with make_client(router) as client:
            await client.execute(IntegrationRequest("PUT", "/upload", json={"ignored": 1}, content=b"raw"))
        assert router.calls("PUT", f"{BASE}/upload")[0].content == b"raw"

    @pytest.mark.asyncio
    async def test_absolute_url_bypasses_base(self, router):
        router.add("GET", "https://other.test/ping", json_response("pong"))
        async with make_client(router) as client:
            assert await client.get("https://other.test/ping") == "pong"

    @pytest.mark.asyncio
    async def test_default_headers(self, router):
        router.add("GET", f"{BASE}/h", json_response({}))
        async with make_client(router, headers={"X-Api-Key": "k"}) as client:
            await client.get("/h")
        sent = router.requests[0]
        assert sent.headers["x-api-key"] == "k"
        assert sent.headers["accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_4xx_is_client_error(self, router):
        router.add("GET", f"{BASE}/bad", json_response({"error": "invalid"}, status=400))
        async with make_client(router) as client:
            with pytest.raises(ClientError) as exc_info:
                await client.get("/bad")
        error = exc_info.value
        assert error.http_status == 400
        assert not error.retryable
        assert "invalid" in error.body
        assert error.context.provider == "registry.public"
        assert error.context.method == "GET"
        assert error.context.url == f"{BASE}/bad"

    @pytest.mark.asyncio
    async def test_429_is_rate_limited(self, router):
        router.add("GET", f"{BASE}/busy", httpx.Response(429, headers={"Retry-After": "7"}))
        async with make_client(router) as client:
            with pytest.raises(RateLimited) as exc_info:
                await client.get("/busy")
        assert exc_info.value.retry_after == 7.0
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [500, 502, 503])
    async def test_5xx_is_server_error(self, router, status):
        router.add("GET", f"{BASE}/down", httpx.Response(status))
        async with make_client(router) as client:
            with pytest.raises(ServerError) as exc_info:
                await client.get("/down")
        assert exc_info.value.http_status == status
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_connect_error_is_network_error(self, router):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        router.add("GET", f"{BASE}/x", refuse)
        async with make_client(router) as client:
            with pytest.raises(NetworkError) as exc_info:
                await client.get("/x")
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_httpx_timeout_is_timeout(self, router):
        def slow(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        router.add("GET", f"{BASE}/slow", slow)
        async with make_client(router) as client:
            with pytest.raises(Timeout):
                await client.get("/slow")

    @pytest.mark.asyncio
    async def test_deadline_is_enforced(self):
        async def hang(request):
            await asyncio.sleep(5)
            return httpx.Response(200)

        transport = httpx.MockTransport(hang)
        async with TransportClient(BASE, transport=transport, timeout=0.01) as client:
            with pytest.raises(Timeout) as exc_info:
                await client.get("/hang")
        assert exc_info.value.timeout == 0.01

    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self, router):
        http = httpx.AsyncClient(transport=router.transport())
        client = TransportClient(BASE, client=http)
        await client.aclose()
        assert not http.is_closed
        await http.aclose()
