"""Dependency injection: the hub lives on ``app.state``."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from tether.hub import IntegrationHub


def get_hub(request: Request) -> IntegrationHub:
    return request.app.state.hub


Hub = Annotated[IntegrationHub, Depends(get_hub)]

__all__ = ["Hub", "get_hub"]
