"""Open-banking aggregator integration.

Credentials never reach this process: the aggregator API key and the
widget connect token are both issued by broker functions that hold the
client secret. The API key is cached until five minutes before it expires
and sent as ``X-API-KEY``.

Business persistence (the transactions table, connection rows) is an
injected :class:`BankingRepository`.

Webhook events:

=========================  ===================================
``item/created``           re-sync transactions
``item/updated``           re-sync transactions
``transactions/created``   re-sync transactions
``item/error``             connection status → ``error``
``item/login_required``    connection status → ``login_required``
``item/deleted``           connection marked deleted
=========================  ===================================
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field

from tether.core.cache import ResponseCache
from tether.core.errors import ClientError, WebhookSignatureError
from tether.core.health import IntegrationHealth
from tether.core.logging import LogContext, get_logger
from tether.core.result import partition_results
from tether.core.secrets import SecretValue
from tether.credentials.broker import BrokerClient
from tether.execution.batch import BatchExecutor
from tether.execution.retry import RetryPolicy
from tether.execution.transport import IntegrationRequest, TransportClient

logger = get_logger(__name__)

HEALTH_NAME = "banking"
API_KEY_BUFFER = timedelta(minutes=5)
CONNECT_TOKEN_LIFETIME = timedelta(hours=1)
DEFAULT_PRODUCTS = ("ACCOUNTS", "TRANSACTIONS")
DEFAULT_SYNC_DAYS = 90
ACCOUNTS_TTL = 300
INSTITUTIONS_TTL = 3_600
DEFAULT_PAGE_SIZE = 100
SYNC_PAGE_SIZE = 500

ConnectionStatus = Literal["connecting", "connected", "login_required", "outdated", "error"]

_ITEM_STATUS: dict[str, ConnectionStatus] = {
    "UPDATING": "connecting",
    "UPDATED": "connected",
    "LOGIN_ERROR": "login_required",
    "OUTDATED": "outdated",
    "ERROR": "error",
}

SYNC_EVENTS = frozenset({"item/created", "item/updated", "transactions/created"})
STATUS_EVENTS = frozenset({"item/error", "item/login_required"})
DELETE_EVENTS = frozenset({"item/deleted"})


def map_item_status(status: str | None) -> ConnectionStatus:
    """Aggregator item status → connection status; unknown values are errors."""
    return _ITEM_STATUS.get((status or "").upper(), "error")


def _parse_datetime(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


# ── Records ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ConnectToken:
    access_token: SecretValue
    expires_at: datetime


@dataclass(frozen=True)
class Institution:
    id: int
    name: str
    type: str | None = None
    image_url: str | None = None
    primary_color: str | None = None
    country: str | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> Institution:
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            type=data.get("type"),
            image_url=data.get("imageUrl"),
            primary_color=data.get("primaryColor"),
            country=data.get("country"),
        )


@dataclass(frozen=True)
class BankAccount:
    id: str
    item_id: str
    type: str
    name: str
    balance: float
    currency_code: str
    number: str | None = None
    bank_name: str | None = None
    branch: str | None = None
    account_number: str | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> BankAccount:
        bank = data.get("bankData") or {}
        return cls(
            id=data["id"],
            item_id=data.get("itemId", ""),
            type=data.get("type", ""),
            name=data.get("name", ""),
            balance=float(data.get("balance") or 0),
            currency_code=data.get("currencyCode", "BRL"),
            number=data.get("number"),
            bank_name=bank.get("bankName"),
            branch=bank.get("branchNumber"),
            account_number=bank.get("accountNumber"),
        )


@dataclass(frozen=True)
class BankTransaction:
    id: str
    account_id: str
    date: datetime
    description: str
    amount: float
    type: Literal["CREDIT", "DEBIT"]
    description_raw: str | None = None
    category: str | None = None
    category_id: str | None = None
    payer: str | None = None
    payee: str | None = None
    payment_method: str | None = None
    reference_number: str | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> BankTransaction:
        payment = data.get("paymentData") or {}
        return cls(
            id=data["id"],
            account_id=data.get("accountId", ""),
            date=_parse_datetime(data.get("date")) or datetime.now(UTC),
            description=data.get("description", ""),
            amount=float(data.get("amount") or 0),
            type="CREDIT" if data.get("type") == "CREDIT" else "DEBIT",
            description_raw=data.get("descriptionRaw"),
            category=data.get("category"),
            category_id=data.get("categoryId"),
            payer=(payment.get("payer") or {}).get("name"),
            payee=(payment.get("receiver") or {}).get("name"),
            payment_method=payment.get("paymentMethod"),
            reference_number=payment.get("referenceNumber"),
        )


@dataclass(frozen=True)
class TransactionPage:
    transactions: list[BankTransaction]
    total: int
    page: int
    total_pages: int

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


@dataclass(frozen=True)
class BankConnection:
    item_id: str
    status: ConnectionStatus
    institution: Institution | None = None
    last_sync: datetime | None = None
    error: str | None = None
    accounts: list[BankAccount] = field(default_factory=list)


@dataclass(frozen=True)
class SyncSummary:
    item_id: str
    synced: int = 0
    errors: int = 0


class WebhookEvent(BaseModel):
    """Inbound aggregator webhook body."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    event: str
    item_id: str = Field(alias="itemId")
    data: dict[str, Any] | None = None
    triggered_by: str | None = Field(default=None, alias="triggeredBy")


# ── Persistence collaborator ─────────────────────────────────────────────


class BankingRepository(Protocol):
    """Business persistence for connections and synced transactions."""

    async def item_ids(self, owner_id: str) -> list[str]: ...

    async def owner_of(self, item_id: str) -> str | None: ...

    async def last_transaction_date(self, account_id: str) -> datetime | None: ...

    async def upsert_transactions(
        self,
        owner_id: str,
        item_id: str,
        transactions: Sequence[BankTransaction],
    ) -> int: ...

    async def update_connection(
        self,
        item_id: str,
        *,
        status: str | None = None,
        error: str | None = None,
        last_sync: datetime | None = None,
        deleted: bool = False,
    ) -> None: ...


@dataclass
class _ConnectionRow:
    owner_id: str
    status: str | None = None
    error: str | None = None
    last_sync: datetime | None = None
    deleted_at: datetime | None = None


class InMemoryBankingRepository:
    """Dict-backed repository for tests and local runs."""

    def __init__(self) -> None:
        self.connections: dict[str, _ConnectionRow] = {}
        self.transactions: dict[str, tuple[str, str, BankTransaction]] = {}

    def add_connection(self, owner_id: str, item_id: str) -> None:
        self.connections[item_id] = _ConnectionRow(owner_id=owner_id)

    async def item_ids(self, owner_id: str) -> list[str]:
        return [
            item_id
            for item_id, row in self.connections.items()
            if row.owner_id == owner_id and row.deleted_at is None
        ]

    async def owner_of(self, item_id: str) -> str | None:
        row = self.connections.get(item_id)
        return row.owner_id if row is not None and row.owner_id else None

    async def last_transaction_date(self, account_id: str) -> datetime | None:
        dates = [tx.date for _, _, tx in self.transactions.values() if tx.account_id == account_id]
        return max(dates) if dates else None

    async def upsert_transactions(
        self,
        owner_id: str,
        item_id: str,
        transactions: Sequence[BankTransaction],
    ) -> int:
        for tx in transactions:
            self.transactions[tx.id] = (owner_id, item_id, tx)
        return len(transactions)

    async def update_connection(
        self,
        item_id: str,
        *,
        status: str | None = None,
        error: str | None = None,
        last_sync: datetime | None = None,
        deleted: bool = False,
    ) -> None:
        row = self.connections.setdefault(item_id, _ConnectionRow(owner_id=""))
        if status is not None:
            row.status = status
        if error is not None:
            row.error = error
        if last_sync is not None:
            row.last_sync = last_sync
        if deleted:
            row.deleted_at = datetime.now(UTC)


# ── Client ───────────────────────────────────────────────────────────────


def verify_webhook_signature(payload: bytes, signature: str | None, secret: str) -> bool:
    """Constant-time HMAC-SHA256 check; accepts hex digests with or without ``sha256=``."""
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    provided = signature.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]
    return hmac.compare_digest(expected, provided.lower())


class BankingClient:
    """Aggregator client: connect tokens, items, accounts, transactions, webhooks.

    Args:
        transport: Transport bound to the aggregator API
        broker: Broker client for API-key and connect-token issuance
        repository: Business persistence
        cache: Shared response cache
        retry: Retry policy for aggregator calls
        batch: Executor used to fetch many connections at once
        clock: Returns an aware UTC ``datetime``
    """

    def __init__(
        self,
        transport: TransportClient,
        broker: BrokerClient,
        repository: BankingRepository,
        *,
        cache: ResponseCache | None = None,
        retry: RetryPolicy | None = None,
        batch: BatchExecutor | None = None,
        auth_function: str = "banking-auth",
        connect_function: str = "banking-connect",
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.transport = transport
        self.broker = broker
        self.repository = repository
        self.cache = cache if cache is not None else ResponseCache()
        self.retry = retry or RetryPolicy()
        self.batch = batch or BatchExecutor()
        self.auth_function = auth_function
        self.connect_function = connect_function
        self._clock = clock
        self._api_key: SecretValue | None = None
        self._api_key_expiry: datetime | None = None

    # ── Authentication ───────────────────────────────────────────

    def _has_valid_api_key(self) -> bool:
        if self._api_key is None or self._api_key_expiry is None:
            return False
        return self._api_key_expiry > self._clock() + API_KEY_BUFFER

    async def api_key(self) -> SecretValue:
        """Cached API key, renewed through the broker near expiry."""
        if self._api_key is not None and self._has_valid_api_key():
            return self._api_key

        payload = await self.broker.invoke(self.auth_function, {"action": "get_api_key"})
        raw = payload.get("apiKey")
        if not raw:
            raise ClientError("broker response has no API key").with_context(
                provider=HEALTH_NAME, operation="get_api_key"
            )
        expires_in = float(payload.get("expiresIn") or 3600)
        self._api_key = SecretValue(raw)
        self._api_key_expiry = self._clock() + timedelta(seconds=expires_in)
        logger.info("banking.api_key_renewed", expires_at=self._api_key_expiry.isoformat())
        return self._api_key

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        key = await self.api_key()
        request = IntegrationRequest(
            method,
            path,
            params=params,
            headers={"X-API-KEY": key.get_secret()},
        )
        return await self.retry.run(lambda: self.transport.execute(request))

    async def create_connect_token(
        self,
        owner_id: str,
        *,
        item_id: str | None = None,
        products: Sequence[str] | None = None,
    ) -> ConnectToken:
        """Connect token for the bank widget; pass ``item_id`` to reconnect."""
        payload = await self.broker.invoke(
            self.connect_function,
            {
                "action": "create_connect_token",
                "ownerId": owner_id,
                "itemId": item_id,
                "products": list(products or DEFAULT_PRODUCTS),
            },
        )
        token = payload.get("accessToken")
        if not token:
            raise ClientError("broker response has no connect token").with_context(
                provider=HEALTH_NAME, operation="create_connect_token"
            )
        return ConnectToken(
            access_token=SecretValue(token),
            expires_at=self._clock() + CONNECT_TOKEN_LIFETIME,
        )

    # ── Items ────────────────────────────────────────────────────

    async def get_connection(self, item_id: str) -> BankConnection:
        data = await self._request("GET", f"/items/{item_id}")
        data = data if isinstance(data, dict) else {}
        connector = data.get("connector")
        accounts = await self.get_accounts(item_id)
        return BankConnection(
            item_id=data.get("id", item_id),
            status=map_item_status(data.get("status")),
            institution=Institution.from_payload(connector) if connector else None,
            last_sync=_parse_datetime(data.get("lastUpdatedAt")),
            error=(data.get("error") or {}).get("message"),
            accounts=accounts,
        )

    async def list_connections(self, owner_id: str) -> list[BankConnection]:
        """All live connections of an owner; items that fail to load are skipped."""
        item_ids = await self.repository.item_ids(owner_id)
        if not item_ids:
            return []
        report = await self.batch.run(item_ids, self.get_connection)
        connections, _ = partition_results(report.results.values())
        return connections

    async def delete_connection(self, item_id: str) -> None:
        await self._request("DELETE", f"/items/{item_id}")
        await self.repository.update_connection(item_id, deleted=True)
        self.cache.delete(f"banking:accounts:{item_id}")

    async def reconnect(self, item_id: str, owner_id: str) -> ConnectToken:
        return await self.create_connect_token(owner_id, item_id=item_id)

    # ── Accounts / transactions ──────────────────────────────────

    async def get_accounts(self, item_id: str) -> list[BankAccount]:
        key = f"banking:accounts:{item_id}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        data = await self._request("GET", "/accounts", params={"itemId": item_id})
        accounts = [BankAccount.from_payload(acc) for acc in (data or {}).get("results", [])]
        self.cache.set(key, accounts, ACCOUNTS_TTL)
        return accounts

    async def get_transactions(
        self,
        account_id: str,
        *,
        from_date: date | None = None,
        to_date: date | None = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> TransactionPage:
        params: dict[str, Any] = {
            "accountId": account_id,
            "page": str(page),
            "pageSize": str(page_size),
        }
        if from_date is not None:
            params["from"] = from_date.isoformat()
        if to_date is not None:
            params["to"] = to_date.isoformat()

        data = await self._request("GET", "/transactions", params=params) or {}
        return TransactionPage(
            transactions=[BankTransaction.from_payload(tx) for tx in data.get("results", [])],
            total=int(data.get("total") or 0),
            page=int(data.get("page") or page),
            total_pages=int(data.get("totalPages") or 0),
        )

    async def iter_transactions(
        self,
        account_id: str,
        *,
        from_date: date | None = None,
        to_date: date | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> AsyncIterator[BankTransaction]:
        """Yield every transaction across all pages."""
        page = 1
        while True:
            result = await self.get_transactions(
                account_id,
                from_date=from_date,
                to_date=to_date,
                page=page,
                page_size=page_size,
            )
            for tx in result.transactions:
                yield tx
            if not result.has_next:
                return
            page += 1

    async def sync_transactions(self, item_id: str, owner_id: str) -> SyncSummary:
        """Pull new transactions for every account of an item into the repository."""
        async with LogContext(item_id=item_id, owner_id=owner_id):
            connection = await self.get_connection(item_id)
            synced = 0
            errors = 0
            default_from = (self._clock() - timedelta(days=DEFAULT_SYNC_DAYS)).date()

            for account in connection.accounts:
                try:
                    last = await self.repository.last_transaction_date(account.id)
                    from_date = last.date() if last else default_from
                    batch = [
                        tx
                        async for tx in self.iter_transactions(
                            account.id, from_date=from_date, page_size=SYNC_PAGE_SIZE
                        )
                    ]
                    synced += await self.repository.upsert_transactions(owner_id, item_id, batch)
                except Exception as e:
                    errors += 1
                    logger.warning(
                        "banking.sync.account_failed",
                        account_id=account.id,
                        error_type=type(e).__name__,
                        error=str(e),
                    )

            await self.repository.update_connection(item_id, last_sync=self._clock())
            logger.info("banking.sync.complete", synced=synced, errors=errors)
            return SyncSummary(item_id=item_id, synced=synced, errors=errors)

    # ── Webhooks ─────────────────────────────────────────────────

    @staticmethod
    def verify_signature(payload: bytes, signature: str | None, secret: str) -> None:
        if not verify_webhook_signature(payload, signature, secret):
            raise WebhookSignatureError("invalid webhook signature").with_context(provider=HEALTH_NAME)

    async def handle_webhook(self, event: WebhookEvent, owner_id: str | None = None) -> str:
        """Apply a webhook event. Returns the action taken.

        The owner is looked up from the repository when not given.
        """
        logger.info("banking.webhook", webhook_event=event.event, item_id=event.item_id)
        if event.event in SYNC_EVENTS:
            owner_id = owner_id or await self.repository.owner_of(event.item_id)
            if owner_id is None:
                logger.warning("banking.webhook.unknown_item", item_id=event.item_id)
                return "ignored"
            await self.sync_transactions(event.item_id, owner_id)
            return "synced"
        if event.event in STATUS_EVENTS:
            status = "login_required" if event.event == "item/login_required" else "error"
            await self.repository.update_connection(
                event.item_id,
                status=status,
                error=str(event.data) if event.data is not None else None,
            )
            return status
        if event.event in DELETE_EVENTS:
            await self.repository.update_connection(event.item_id, deleted=True)
            self.cache.delete(f"banking:accounts:{event.item_id}")
            return "deleted"
        logger.info("banking.webhook.ignored", webhook_event=event.event)
        return "ignored"

    # ── Institutions / health ────────────────────────────────────

    async def list_institutions(self, institution_type: str | None = None) -> list[Institution]:
        key = f"banking:institutions:{institution_type or 'all'}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        params: dict[str, Any] = {"countries": "BR"}
        if institution_type:
            params["types"] = institution_type
        data = await self._request("GET", "/connectors", params=params) or {}
        institutions = [Institution.from_payload(item) for item in data.get("results", [])]
        self.cache.set(key, institutions, INSTITUTIONS_TTL)
        return institutions

    async def health(self, owner_id: str) -> IntegrationHealth:
        try:
            connections = await self.list_connections(owner_id)
        except Exception as e:  # noqa: BLE001
            return IntegrationHealth(name=HEALTH_NAME, status="error", error=str(e)[:200])

        if not connections:
            return IntegrationHealth(name=HEALTH_NAME, status="disconnected")

        statuses = {c.status for c in connections}
        syncs = [c.last_sync for c in connections if c.last_sync]
        last_sync = max(syncs) if syncs else None
        details = {"connections": len(connections)}

        if "error" in statuses:
            return IntegrationHealth(
                name=HEALTH_NAME,
                status="error",
                last_sync=last_sync,
                error="one or more connections have errors",
                details=details,
            )
        if "login_required" in statuses:
            return IntegrationHealth(
                name=HEALTH_NAME,
                status="login_required",
                last_sync=last_sync,
                error="one or more connections require re-authentication",
                details=details,
            )
        if "outdated" in statuses:
            return IntegrationHealth(name=HEALTH_NAME, status="outdated", last_sync=last_sync, details=details)
        status = "connected" if statuses == {"connected"} else "connecting"
        return IntegrationHealth(name=HEALTH_NAME, status=status, last_sync=last_sync, details=details)


__all__ = [
    "ConnectionStatus",
    "ConnectToken",
    "Institution",
    "BankAccount",
    "BankTransaction",
    "TransactionPage",
    "BankConnection",
    "SyncSummary",
    "WebhookEvent",
    "BankingRepository",
    "InMemoryBankingRepository",
    "BankingClient",
    "map_item_status",
    "verify_webhook_signature",
]
