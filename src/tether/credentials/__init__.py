"""Credential lifecycle: records, broker clients and the manager."""

from tether.credentials.broker import BrokerClient, OAuthBroker
from tether.credentials.manager import (
    DEFAULT_REFRESH_BUFFER,
    CredentialManager,
    OAuthConfig,
    SingleFlightGuard,
)
from tether.credentials.models import (
    Credential,
    CredentialBroker,
    CredentialStore,
    InMemoryCredentialStore,
    TokenGrant,
)

__all__ = [
    "DEFAULT_REFRESH_BUFFER",
    "BrokerClient",
    "Credential",
    "CredentialBroker",
    "CredentialManager",
    "CredentialStore",
    "InMemoryCredentialStore",
    "OAuthBroker",
    "OAuthConfig",
    "SingleFlightGuard",
    "TokenGrant",
]
