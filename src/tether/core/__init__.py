"""
Core primitives shared by every integration.

Modules:
- errors: typed error hierarchy and the transient classifier
- logging: structlog configuration with secret redaction
- result: Ok/Err used for per-item batch outcomes
- secrets: SecretValue wrapper that never prints its value
- cache: TTL response cache with a background sweep
- health: integration health models and aggregation
- settings: TETHER_* environment configuration
"""

from tether.core.cache import CacheTtlPolicy, ResponseCache
from tether.core.errors import (
    AuthExpired,
    ClientError,
    ErrorCategory,
    IntegrationUnavailable,
    NetworkError,
    NotFound,
    RateLimited,
    ServerError,
    TetherError,
    Timeout,
    ValidationError,
    is_transient,
)
from tether.core.health import HealthReport, IntegrationHealth, run_health_checks
from tether.core.logging import LogContext, configure_logging, get_logger
from tether.core.result import Err, Ok, Result
from tether.core.secrets import SecretValue
from tether.core.settings import TetherSettings, get_settings

__all__ = [
    "AuthExpired",
    "CacheTtlPolicy",
    "ClientError",
    "Err",
    "ErrorCategory",
    "HealthReport",
    "IntegrationHealth",
    "IntegrationUnavailable",
    "LogContext",
    "NetworkError",
    "NotFound",
    "Ok",
    "RateLimited",
    "ResponseCache",
    "Result",
    "SecretValue",
    "ServerError",
    "TetherError",
    "TetherSettings",
    "Timeout",
    "ValidationError",
    "configure_logging",
    "get_logger",
    "get_settings",
    "is_transient",
    "run_health_checks",
]
