"""
Shared pytest fixtures for tether tests.

This module provides:
- Fake sleep and clocks so retry, batch and cache tests never wait
- Helpers for building ``httpx.MockTransport`` routes
- Quiet structlog configuration (no output, loggers never cached)
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest
import structlog


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(autouse=True)
def quiet_structlog():
    """Swallow log output so CLI JSON assertions see only command output."""
    structlog.configure(
        processors=[structlog.processors.KeyValueRenderer()],
        logger_factory=structlog.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    yield
    structlog.reset_defaults()


# =============================================================================
# Time
# =============================================================================


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeMonotonic:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUtcClock:
    """Aware UTC wall clock advanced by hand."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 3, 10, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def utc_clock() -> FakeUtcClock:
    return FakeUtcClock()


# =============================================================================
# HTTP fakes
# =============================================================================


def json_response(data: Any, status: int = 200, headers: dict[str, str] | None = None) -> httpx.Response:
    return httpx.Response(status, json=data, headers=headers)


def request_json(request: httpx.Request) -> Any:
    return json.loads(request.content) if request.content else None


class Router:
    """Tiny request router for ``httpx.MockTransport``.

    Routes are ``(method, host, path) -> handler``; every request is recorded.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, url: str, handler: Callable[[httpx.Request], httpx.Response] | httpx.Response):
        parsed = httpx.URL(url)
        if isinstance(handler, httpx.Response):
            template = handler
            handler = lambda request: httpx.Response(  # noqa: E731
                template.status_code, content=template.content, headers=template.headers
            )
        self.routes[(method.upper(), parsed.host, parsed.path)] = handler

    def calls(self, method: str, url: str) -> list[httpx.Request]:
        parsed = httpx.URL(url)
        return [
            r
            for r in self.requests
            if r.method == method.upper() and r.url.host == parsed.host and r.url.path == parsed.path
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.host, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": f"no route for {request.method} {request.url}"})
        return handler(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def router() -> Router:
    return Router()
