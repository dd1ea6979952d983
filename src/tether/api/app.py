"""
FastAPI application factory.

``create_app()`` wires the integration hub, error handlers, routers and the
lifespan into a single ``FastAPI`` instance.

Manifesto:
    Routers stay thin: they resolve the hub from ``app.state`` and call one
    client method. Integration errors surface as RFC 7807 problems through
    one handler, never through per-route try/except.

Tags:
    api, app-factory, FastAPI, tether
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tether import __version__
from tether.api.errors import tether_error_handler, unhandled_exception_handler
from tether.core.errors import TetherError
from tether.core.logging import get_logger
from tether.core.settings import TetherSettings
from tether.hub import IntegrationHub

logger = get_logger(__name__)


def create_app(
    hub: IntegrationHub | None = None,
    *,
    settings: TetherSettings | None = None,
) -> FastAPI:
    """Build the API around ``hub``.

    When ``hub`` is omitted one is built from ``settings`` (or the
    environment) and closed on shutdown. An injected hub is left open for
    its owner to close.
    """
    owns_hub = hub is None
    hub = hub or IntegrationHub.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        hub.cache.start()
        logger.info("api.starting", version=__version__)
        yield
        if owns_hub:
            await hub.aclose()
        else:
            await hub.cache.aclose()
        logger.info("api.stopped")

    app = FastAPI(title="tether", version=__version__, lifespan=lifespan)
    app.state.hub = hub

    # ── Exception handlers ───────────────────────────────────────────
    app.add_exception_handler(TetherError, tether_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routers ──────────────────────────────────────────────────────
    from tether.api.routers import fiscal, health, registry, webhooks

    app.include_router(health.router)
    app.include_router(webhooks.router)
    app.include_router(fiscal.router)
    app.include_router(registry.router)

    return app


__all__ = ["create_app"]
