"""Integration health models and aggregation.

Provides:

- **``IntegrationHealth``**: one integration's connection state
  (``connected``, ``expiring``, ``error`` ...) with optional credential
  expiry details.
- **``HealthReport``**: the JSON envelope returned from ``GET /health`` and
  printed by ``tether health``.
- **``run_health_checks()``**: runs each integration's async health probe in
  parallel, bounded by a per-check timeout; a probe that raises or times out
  becomes an ``error`` entry instead of failing the report.

Quick start::

    report = await run_health_checks(
        {"registry": registry.health, "groupware": groupware.health},
        service="tether",
    )
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from tether.core.logging import get_logger

logger = get_logger(__name__)

IntegrationStatus = Literal[
    "connected",
    "disconnected",
    "error",
    "expiring",
    "connecting",
    "outdated",
    "login_required",
]

EXPIRY_WARNING_DAYS = 7


# ── Response Models ──────────────────────────────────────────────────────


class IntegrationHealth(BaseModel):
    """Health of a single external integration."""

    name: str
    status: IntegrationStatus
    last_sync: datetime | None = None
    error: str | None = None
    expires_at: datetime | None = None
    days_until_expiry: int | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_usable(self) -> bool:
        return self.status in ("connected", "expiring")


class HealthReport(BaseModel):
    """Aggregate health envelope.

    Fields
    ──────
    status       : ``healthy`` | ``degraded`` | ``unhealthy``
    service      : Service name
    timestamp    : ISO-8601 UTC
    integrations : name → IntegrationHealth
    """

    status: Literal["healthy", "degraded", "unhealthy"] = "healthy"
    service: str = "tether"
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    integrations: dict[str, IntegrationHealth] = Field(default_factory=dict)


# ── Helpers ──────────────────────────────────────────────────────────────


def expiry_health(
    name: str,
    expires_at: datetime | None,
    *,
    now: datetime | None = None,
    warn_days: int = EXPIRY_WARNING_DAYS,
    last_sync: datetime | None = None,
) -> IntegrationHealth:
    """Health for a credential-backed integration based on its expiry."""
    if expires_at is None:
        return IntegrationHealth(name=name, status="disconnected", last_sync=last_sync)
    now = now or datetime.now(UTC)
    remaining = expires_at - now
    days = int(remaining.total_seconds() // 86_400)
    if remaining.total_seconds() <= 0:
        return IntegrationHealth(
            name=name,
            status="error",
            error="credential expired",
            expires_at=expires_at,
            days_until_expiry=days,
            last_sync=last_sync,
        )
    status: IntegrationStatus = "expiring" if days < warn_days else "connected"
    return IntegrationHealth(
        name=name,
        status=status,
        expires_at=expires_at,
        days_until_expiry=days,
        last_sync=last_sync,
    )


def aggregate_status(
    results: Mapping[str, IntegrationHealth],
) -> Literal["healthy", "degraded", "unhealthy"]:
    """All usable → healthy, some usable → degraded, none usable → unhealthy."""
    if not results:
        return "healthy"
    usable = sum(1 for health in results.values() if health.is_usable)
    if usable == len(results):
        return "healthy"
    if usable == 0:
        return "unhealthy"
    return "degraded"


async def run_health_checks(
    probes: Mapping[str, Callable[[], Awaitable[IntegrationHealth]]],
    *,
    service: str = "tether",
    timeout_s: float = 10.0,
) -> HealthReport:
    """Execute all probes in parallel and build a report."""

    async def _one(name: str, probe: Callable[[], Awaitable[IntegrationHealth]]) -> IntegrationHealth:
        try:
            return await asyncio.wait_for(probe(), timeout=timeout_s)
        except TimeoutError:
            return IntegrationHealth(name=name, status="error", error="timeout")
        except Exception as exc:  # noqa: BLE001
            logger.warning("health.probe_failed", integration=name, error=str(exc))
            return IntegrationHealth(name=name, status="error", error=str(exc)[:200])

    names = list(probes)
    results = await asyncio.gather(*[_one(name, probes[name]) for name in names])
    integrations = dict(zip(names, results, strict=True))
    return HealthReport(
        status=aggregate_status(integrations),
        service=service,
        integrations=integrations,
    )


__all__ = [
    "IntegrationStatus",
    "IntegrationHealth",
    "HealthReport",
    "EXPIRY_WARNING_DAYS",
    "expiry_health",
    "aggregate_status",
    "run_health_checks",
]
