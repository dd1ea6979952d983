"""Product-registry integration.

Two backends answer the same question ("is registration N valid?") with
different schemas:

- the paid **accelerator** (``POST /consultas/anvisa/registro``), preferred
  when a token is configured;
- the **public** authority API (``GET /produto/{id}``), always available.

Each backend is a :class:`~tether.providers.base.RegistryProvider` that
produces the canonical :class:`~tether.providers.base.ProviderResult`;
:class:`RegistryClient` puts them behind the fallback orchestrator and adds
product search and a health probe.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from tether.core.errors import ClientError
from tether.core.health import IntegrationHealth
from tether.core.logging import get_logger
from tether.core.result import Result
from tether.core.secrets import SecretValue
from tether.execution.batch import BatchReport
from tether.execution.retry import RetryPolicy
from tether.execution.transport import TransportClient
from tether.providers.base import (
    ProviderResult,
    RiskClass,
    Situation,
    parse_date,
)
from tether.providers.orchestrator import FallbackOrchestrator

logger = get_logger(__name__)

ACCELERATOR = "registry.accelerator"
PUBLIC = "registry.public"
HEALTH_NAME = "registry"
HEALTH_PROBE_IDENTIFIER = "1020300000001"
SLOW_RESPONSE_SECONDS = 10.0


def _today() -> date:
    return datetime.now(UTC).date()


class AcceleratorProvider:
    """Paid accelerator backend.

    ``code != 200`` or an empty ``data`` list is a clean negative. An
    ``ATIVO`` record whose validity date has passed is reported as expired.
    """

    name = ACCELERATOR

    def __init__(
        self,
        transport: TransportClient,
        token: SecretValue | None,
        *,
        today: Callable[[], date] = _today,
    ):
        self.transport = transport
        self.token = token
        self._today = today

    @property
    def enabled(self) -> bool:
        return self.token is not None

    async def fetch(self, identifier: str) -> ProviderResult | None:
        body: dict[str, Any] = {"numero_registro": identifier}
        if self.token is not None:
            body["token"] = self.token.get_secret()
        payload = await self.transport.post("/consultas/anvisa/registro", json=body)

        if not isinstance(payload, dict) or payload.get("code") != 200 or not payload.get("data"):
            return None

        record = payload["data"][0]
        expires_on = parse_date(record.get("valido_ate"))
        situation = Situation.parse(record.get("situacao"))
        if situation is Situation.ACTIVE and expires_on is not None and expires_on < self._today():
            situation = Situation.EXPIRED

        return ProviderResult(
            identifier=record.get("numero_registro") or identifier,
            valid=situation is Situation.ACTIVE,
            situation=situation,
            provider=self.name,
            product_name=record.get("nome_comercial"),
            holder_name=record.get("titular"),
            expires_on=expires_on,
            risk_class=RiskClass.parse(record.get("classe_risco")),
        )


class PublicRegistryProvider:
    """Public authority backend. A 404 is a clean negative."""

    name = PUBLIC
    enabled = True

    def __init__(self, transport: TransportClient):
        self.transport = transport

    async def fetch(self, identifier: str) -> ProviderResult | None:
        try:
            record = await self.transport.get(f"/produto/{identifier}")
        except ClientError as e:
            if e.http_status == 404:
                return None
            raise

        if not isinstance(record, dict):
            return None

        situation = Situation.parse(record.get("situacao"))
        return ProviderResult(
            identifier=identifier,
            valid=situation is Situation.ACTIVE,
            situation=situation,
            provider=self.name,
            product_name=record.get("nomeProduto"),
            holder_name=record.get("nomeEmpresa"),
            expires_on=parse_date(record.get("dataVencimento")),
            risk_class=RiskClass.parse(record.get("classeRisco")),
            regulatory_category=record.get("categoriaReguladora"),
            purpose=record.get("finalidade"),
            presentation=record.get("apresentacao"),
        )


@dataclass(frozen=True)
class ProductSummary:
    identifier: str
    name: str
    holder_name: str | None
    risk_class: RiskClass | None
    situation: Situation


@dataclass(frozen=True)
class ProductSearchPage:
    products: list[ProductSummary] = field(default_factory=list)
    total: int = 0
    page: int = 1


class RegistryClient:
    """Registry lookups, batch validation, product search and health."""

    def __init__(
        self,
        orchestrator: FallbackOrchestrator,
        public_transport: TransportClient,
        *,
        retry: RetryPolicy | None = None,
    ):
        self.orchestrator = orchestrator
        self.public_transport = public_transport
        self.retry = retry or orchestrator.retry
        self.last_health_check: datetime | None = None

    async def lookup(self, identifier: str, *, force_refresh: bool = False) -> ProviderResult:
        return await self.orchestrator.lookup(identifier, force_refresh=force_refresh)

    async def lookup_many(self, identifiers: Iterable[str]) -> dict[str, Result[ProviderResult]]:
        return await self.orchestrator.lookup_many(identifiers)

    async def lookup_batch(self, identifiers: Iterable[str]) -> BatchReport[str, ProviderResult]:
        return await self.orchestrator.lookup_batch(identifiers)

    async def search_products(
        self,
        term: str,
        *,
        page: int = 1,
        page_size: int = 20,
        risk_class: RiskClass | str | None = None,
    ) -> ProductSearchPage:
        """Search registered products by name on the public backend."""
        query = f"nomeProduto~*'{term}'"
        if risk_class is not None:
            value = risk_class.value if isinstance(risk_class, RiskClass) else risk_class
            query += f"~classeRisco:'{value}'"
        params = {"filter": query, "page": str(page), "count": str(page_size)}

        payload = await self.retry.run(lambda: self.public_transport.get("/produto", params=params))
        payload = payload if isinstance(payload, dict) else {}
        products = [
            ProductSummary(
                identifier=item.get("numeroRegistro", ""),
                name=item.get("nomeProduto", ""),
                holder_name=item.get("nomeEmpresa"),
                risk_class=RiskClass.parse(item.get("classeRisco")),
                situation=Situation.parse(item.get("situacao")),
            )
            for item in payload.get("content") or []
        ]
        return ProductSearchPage(
            products=products,
            total=int(payload.get("totalElements") or 0),
            page=page,
        )

    async def health(self) -> IntegrationHealth:
        """Probe with a known identifier, bypassing the cache."""
        started = time.monotonic()
        try:
            await self.lookup(HEALTH_PROBE_IDENTIFIER, force_refresh=True)
        except Exception as e:  # noqa: BLE001
            self.last_health_check = datetime.now(UTC)
            logger.warning("registry.health.failed", error=str(e))
            return IntegrationHealth(
                name=HEALTH_NAME,
                status="error",
                last_sync=self.last_health_check,
                error=str(e)[:200],
            )
        elapsed = time.monotonic() - started
        self.last_health_check = datetime.now(UTC)
        if elapsed > SLOW_RESPONSE_SECONDS:
            return IntegrationHealth(
                name=HEALTH_NAME,
                status="error",
                last_sync=self.last_health_check,
                error=f"slow response: {elapsed * 1000:.0f}ms",
            )
        return IntegrationHealth(
            name=HEALTH_NAME,
            status="connected",
            last_sync=self.last_health_check,
            details={"response_ms": round(elapsed * 1000, 1)},
        )


__all__ = [
    "ACCELERATOR",
    "PUBLIC",
    "AcceleratorProvider",
    "PublicRegistryProvider",
    "ProductSummary",
    "ProductSearchPage",
    "RegistryClient",
]
