"""Tests for structured logging helpers."""

from __future__ import annotations

import pytest
import structlog

from tether.core.logging import REDACTED, LogContext, get_logger, redact_secrets


class TestRedactSecrets:
    def test_masks_sensitive_keys(self):
        event = {"event": "x", "access_token": "abc", "api_key": "k", "item_id": "it-1"}
        out = redact_secrets(None, "info", event)
        assert out["access_token"] == REDACTED
        assert out["api_key"] == REDACTED
        assert out["item_id"] == "it-1"

    def test_case_insensitive(self):
        out = redact_secrets(None, "info", {"Authorization": "Bearer x"})
        assert out["Authorization"] == REDACTED

    def test_nested_dicts(self):
        out = redact_secrets(None, "info", {"request": {"headers": {"authorization": "Bearer x"}, "path": "/me"}})
        assert out["request"]["headers"]["authorization"] == REDACTED
        assert out["request"]["path"] == "/me"

    def test_none_values_left_alone(self):
        out = redact_secrets(None, "info", {"refresh_token": None})
        assert out["refresh_token"] is None


class TestLogContext:
    def test_binds_and_unbinds(self):
        with LogContext(owner_id="owner-1"):
            assert structlog.contextvars.get_contextvars()["owner_id"] == "owner-1"
        assert "owner_id" not in structlog.contextvars.get_contextvars()

    @pytest.mark.asyncio
    async def test_async_form(self):
        async with LogContext(item_id="it-9"):
            assert structlog.contextvars.get_contextvars()["item_id"] == "it-9"
        assert "item_id" not in structlog.contextvars.get_contextvars()


class TestGetLogger:
    def test_event_names_are_captured(self):
        with structlog.testing.capture_logs() as logs:
            get_logger("tether.test").info("registry.lookup.cache_hit", identifier="1")
        assert logs == [{"event": "registry.lookup.cache_hit", "identifier": "1", "log_level": "info"}]
