"""Registry provider variants and the fallback orchestrator."""

from tether.providers.base import (
    IDENTIFIER_LENGTH,
    ProviderResult,
    RegistryProvider,
    RiskClass,
    Situation,
    normalize_identifier,
)
from tether.providers.orchestrator import FallbackOrchestrator

__all__ = [
    "IDENTIFIER_LENGTH",
    "FallbackOrchestrator",
    "ProviderResult",
    "RegistryProvider",
    "RiskClass",
    "Situation",
    "normalize_identifier",
]
