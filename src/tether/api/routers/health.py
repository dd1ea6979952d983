"""``GET /health``: per-integration health with an aggregate status."""

from __future__ import annotations

from fastapi import APIRouter, Query, Response

from tether.api.deps import Hub
from tether.core.health import HealthReport

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthReport)
async def health(
    hub: Hub,
    response: Response,
    owner: str | None = Query(default=None, description="Include owner-scoped integrations"),
) -> HealthReport:
    """Probe every configured integration.

    Returns 503 when no integration is usable.
    """
    report = await hub.health(owner)
    if report.status == "unhealthy":
        response.status_code = 503
    return report
