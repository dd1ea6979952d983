"""Fiscal contingency endpoints.

``GET    /fiscal/{owner}/contingency``   current state and history
``POST   /fiscal/{owner}/contingency``   enter contingency (no-op if active)
``DELETE /fiscal/{owner}/contingency``   leave contingency (no-op if normal)
"""

from __future__ import annotations

from fastapi import APIRouter

from tether.api.deps import Hub
from tether.api.schemas import ContingencyStatusResponse, EnableContingencyRequest

router = APIRouter(prefix="/fiscal", tags=["fiscal"])


@router.get("/{owner}/contingency", response_model=ContingencyStatusResponse)
async def get_contingency(owner: str, hub: Hub) -> ContingencyStatusResponse:
    machine = hub.contingency_for(owner)
    return ContingencyStatusResponse.from_status(machine.status(), history=machine.history())


@router.post("/{owner}/contingency", response_model=ContingencyStatusResponse)
async def enable_contingency(
    owner: str,
    body: EnableContingencyRequest,
    hub: Hub,
) -> ContingencyStatusResponse:
    machine = hub.contingency_for(owner)
    changed = machine.enable(body.contingency_type, body.reason)
    return ContingencyStatusResponse.from_status(machine.status(), changed=changed)


@router.delete("/{owner}/contingency", response_model=ContingencyStatusResponse)
async def disable_contingency(owner: str, hub: Hub) -> ContingencyStatusResponse:
    machine = hub.contingency_for(owner)
    changed = machine.disable()
    return ContingencyStatusResponse.from_status(machine.status(), changed=changed)
