"""``GET /registry/{identifier}``: one registry lookup through the fallback chain."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from tether.api.deps import Hub

router = APIRouter(prefix="/registry", tags=["registry"])


@router.get("/{identifier}")
async def lookup(
    identifier: str,
    hub: Hub,
    refresh: bool = Query(default=False, description="Bypass the cache"),
) -> dict[str, Any]:
    result = await hub.registry.lookup(identifier, force_refresh=refresh)
    return result.to_dict()
