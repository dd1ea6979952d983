"""Concrete integration clients: registry, open banking, groupware."""

from tether.integrations.banking import (
    BankAccount,
    BankConnection,
    BankingClient,
    BankingRepository,
    BankTransaction,
    InMemoryBankingRepository,
    WebhookEvent,
    verify_webhook_signature,
)
from tether.integrations.groupware import (
    CalendarEvent,
    GroupwareClient,
    GroupwareUser,
    MailMessage,
)
from tether.integrations.registry import (
    AcceleratorProvider,
    PublicRegistryProvider,
    RegistryClient,
)

__all__ = [
    "AcceleratorProvider",
    "BankAccount",
    "BankConnection",
    "BankTransaction",
    "BankingClient",
    "BankingRepository",
    "CalendarEvent",
    "GroupwareClient",
    "GroupwareUser",
    "InMemoryBankingRepository",
    "MailMessage",
    "PublicRegistryProvider",
    "RegistryClient",
    "WebhookEvent",
    "verify_webhook_signature",
]
