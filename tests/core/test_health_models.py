"""Tests for integration health models and aggregation."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from tether.core.health import (
    IntegrationHealth,
    aggregate_status,
    expiry_health,
    run_health_checks,
)

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)


class TestExpiryHealth:
    def test_no_expiry_is_disconnected(self):
        assert expiry_health("groupware", None, now=NOW).status == "disconnected"

    def test_expired(self):
        health = expiry_health("groupware", NOW - timedelta(minutes=1), now=NOW)
        assert health.status == "error"
        assert health.error == "credential expired"

    def test_expiring_within_warning_window(self):
        health = expiry_health("groupware", NOW + timedelta(days=3), now=NOW)
        assert health.status == "expiring"
        assert health.days_until_expiry == 3
        assert health.is_usable

    def test_connected(self):
        health = expiry_health("groupware", NOW + timedelta(days=30), now=NOW)
        assert health.status == "connected"


class TestAggregateStatus:
    def test_empty_is_healthy(self):
        assert aggregate_status({}) == "healthy"

    def test_mixed_is_degraded(self):
        results = {
            "a": IntegrationHealth(name="a", status="connected"),
            "b": IntegrationHealth(name="b", status="error"),
        }
        assert aggregate_status(results) == "degraded"

    def test_none_usable_is_unhealthy(self):
        results = {"a": IntegrationHealth(name="a", status="disconnected")}
        assert aggregate_status(results) == "unhealthy"


class TestRunHealthChecks:
    @pytest.mark.asyncio
    async def test_collects_results(self):
        async def ok():
            return IntegrationHealth(name="registry", status="connected")

        report = await run_health_checks({"registry": ok})
        assert report.status == "healthy"
        assert report.integrations["registry"].status == "connected"

    @pytest.mark.asyncio
    async def test_raising_probe_becomes_error(self):
        async def broken():
            raise RuntimeError("kaput")

        report = await run_health_checks({"fiscal": broken})
        assert report.integrations["fiscal"].status == "error"
        assert report.integrations["fiscal"].error == "kaput"
        assert report.status == "unhealthy"

    @pytest.mark.asyncio
    async def test_timeout_becomes_error(self):
        async def slow():
            await asyncio.sleep(1)
            return IntegrationHealth(name="slow", status="connected")

        report = await run_health_checks({"slow": slow}, timeout_s=0.01)
        assert report.integrations["slow"].error == "timeout"
