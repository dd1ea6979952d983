"""
Tether - resilience layer for third-party integrations.

Subpackages:
- tether.core: errors, logging, settings, cache, health
- tether.execution: transport, retry, batch
- tether.providers: registry provider variants and fallback
- tether.credentials: OAuth credential lifecycle
- tether.fiscal: fiscal client and contingency state machine
- tether.integrations: registry, open banking, groupware clients
"""

__version__ = "0.1.0"

from tether.core.errors import (  # noqa: E402
    ClientError,
    IntegrationUnavailable,
    NetworkError,
    RateLimited,
    ServerError,
    TetherError,
    Timeout,
)

__all__ = [
    "__version__",
    "ClientError",
    "IntegrationUnavailable",
    "NetworkError",
    "RateLimited",
    "ServerError",
    "TetherError",
    "Timeout",
]
