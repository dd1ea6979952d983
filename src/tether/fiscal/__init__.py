"""Fiscal-authority integration and its contingency state machine."""

from tether.fiscal.client import (
    CertificateInfo,
    DocumentStatus,
    FiscalClient,
    FiscalResponse,
    ServiceStatus,
)
from tether.fiscal.contingency import (
    ContingencyRecord,
    ContingencyStateMachine,
    ContingencyStatus,
    ContingencyStore,
    ContingencyType,
    InMemoryContingencyStore,
    SqliteContingencyStore,
)

__all__ = [
    "CertificateInfo",
    "ContingencyRecord",
    "ContingencyStateMachine",
    "ContingencyStatus",
    "ContingencyStore",
    "ContingencyType",
    "DocumentStatus",
    "FiscalClient",
    "FiscalResponse",
    "InMemoryContingencyStore",
    "ServiceStatus",
    "SqliteContingencyStore",
]
