"""
Composition root: builds every integration client from settings.

Manifesto:
    Each client takes its collaborators (transport, cache, retry, batch,
    stores) as constructor arguments. ``IntegrationHub`` is the one place
    that decides which concrete collaborators to build, so the API and the
    CLI share the same wiring and tests can swap any piece.

Architecture:
    ::

        IntegrationHub.from_settings(settings)
        ├── cache          ResponseCache (one per hub)
        ├── retry / batch  from TETHER_RETRY_* / TETHER_BATCH_*
        ├── registry       RegistryClient ── FallbackOrchestrator
        │                    ├── AcceleratorProvider   (token set)
        │                    └── PublicRegistryProvider
        ├── broker         BrokerClient                (broker_url set)
        ├── banking        BankingClient               (broker set)
        ├── groupware      GroupwareClient             (broker + client id set)
        └── fiscal_for(owner) / contingency_for(owner)
                           one state machine per owner over a shared store

Tags:
    composition-root, wiring, settings, tether
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

import httpx

from tether.core.cache import CacheTtlPolicy, ResponseCache
from tether.core.errors import MissingConfigError
from tether.core.health import HealthReport, IntegrationHealth, run_health_checks
from tether.core.logging import get_logger
from tether.core.secrets import to_secret
from tether.core.settings import TetherSettings, get_settings
from tether.credentials.broker import BrokerClient, OAuthBroker
from tether.credentials.manager import CredentialManager, OAuthConfig
from tether.credentials.models import CredentialStore, InMemoryCredentialStore
from tether.execution.batch import BatchExecutor
from tether.execution.retry import RetryPolicy
from tether.execution.transport import TransportClient
from tether.fiscal.client import FiscalClient
from tether.fiscal.contingency import (
    ContingencyStateMachine,
    ContingencyStore,
    InMemoryContingencyStore,
    SqliteContingencyStore,
)
from tether.integrations.banking import BankingClient, BankingRepository, InMemoryBankingRepository
from tether.integrations.groupware import GroupwareClient
from tether.integrations.registry import (
    ACCELERATOR,
    PUBLIC,
    AcceleratorProvider,
    PublicRegistryProvider,
    RegistryClient,
)
from tether.providers.orchestrator import FallbackOrchestrator

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class IntegrationHub:
    """Owns the shared collaborators and the integration clients built on them."""

    def __init__(
        self,
        settings: TetherSettings,
        *,
        http_transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep | None = None,
        contingency_store: ContingencyStore | None = None,
        banking_repository: BankingRepository | None = None,
        credential_store: CredentialStore | None = None,
    ):
        self.settings = settings
        self._http_transport = http_transport
        self._transports: list[TransportClient] = []

        sleep_kwargs: dict[str, Any] = {"sleep": sleep} if sleep is not None else {}
        self.cache = ResponseCache(
            max_size=settings.cache_max_size,
            sweep_interval=settings.cache_sweep_interval,
        )
        self.retry = RetryPolicy.from_settings(settings, **sleep_kwargs)
        self.batch = BatchExecutor(
            settings.batch_concurrency,
            settings.batch_pacing_delay,
            **sleep_kwargs,
        )
        self.ttl_policy = CacheTtlPolicy(
            positive_ttl=settings.cache_positive_ttl,
            negative_ttl=settings.cache_negative_ttl,
        )

        self.registry = self._build_registry()

        self.broker: BrokerClient | None = None
        if settings.broker_url:
            headers = {}
            if settings.broker_token is not None:
                headers["Authorization"] = f"Bearer {settings.broker_token.get_secret_value()}"
            self.broker = BrokerClient(
                self._transport(settings.broker_url, "broker", headers=headers),
                retry=self.retry,
            )

        self._owns_contingency_store = contingency_store is None
        self._contingency_store = contingency_store or self._build_contingency_store()
        self._fiscal_transport: TransportClient | None = None
        if settings.fiscal_gateway_url:
            self._fiscal_transport = self._transport(settings.fiscal_gateway_url, "fiscal")

        self.banking: BankingClient | None = None
        if self.broker is not None:
            self.banking = BankingClient(
                self._transport(settings.banking_base_url, "banking"),
                self.broker,
                banking_repository or InMemoryBankingRepository(),
                cache=self.cache,
                retry=self.retry,
                batch=self.batch,
            )

        self.groupware: GroupwareClient | None = None
        if self.broker is not None and settings.groupware_client_id:
            credentials = CredentialManager(
                credential_store or InMemoryCredentialStore(),
                OAuthBroker(self.broker, function="groupware-auth"),
                oauth=OAuthConfig(
                    client_id=settings.groupware_client_id,
                    redirect_uri=settings.groupware_redirect_uri,
                    tenant=settings.groupware_tenant_id,
                    authority=settings.groupware_authority,
                ),
                refresh_buffer=timedelta(minutes=settings.refresh_buffer_minutes),
                single_flight=settings.single_flight_refresh,
                name="groupware",
            )
            self.groupware = GroupwareClient(
                self._transport(settings.groupware_graph_url, "groupware"),
                credentials,
                cache=self.cache,
                retry=self.retry,
                upload_folder=settings.groupware_upload_folder,
                scopes=settings.groupware_scopes,
            )

    @classmethod
    def from_settings(cls, settings: TetherSettings | None = None, **kwargs: Any) -> IntegrationHub:
        return cls(settings or get_settings(), **kwargs)

    # ── Builders ─────────────────────────────────────────────────

    def _transport(self, base_url: str, provider: str, *, headers: dict[str, str] | None = None) -> TransportClient:
        transport = TransportClient(
            base_url,
            provider=provider,
            timeout=self.settings.transport_timeout,
            headers=headers,
            transport=self._http_transport,
        )
        self._transports.append(transport)
        return transport

    def _build_registry(self) -> RegistryClient:
        settings = self.settings
        public_transport = self._transport(settings.registry_public_url, PUBLIC)
        providers = [
            AcceleratorProvider(
                self._transport(settings.registry_accelerator_url, ACCELERATOR),
                to_secret(settings.registry_accelerator_token),
            ),
            PublicRegistryProvider(public_transport),
        ]
        orchestrator = FallbackOrchestrator(
            providers,
            cache=self.cache,
            retry=self.retry,
            ttl_policy=self.ttl_policy,
            batch=self.batch,
        )
        return RegistryClient(orchestrator, public_transport, retry=self.retry)

    def _build_contingency_store(self) -> ContingencyStore:
        if self.settings.contingency_db_path is not None:
            return SqliteContingencyStore(self.settings.contingency_db_path)
        return InMemoryContingencyStore()

    # ── Per-owner clients ────────────────────────────────────────

    def contingency_for(self, owner_id: str) -> ContingencyStateMachine:
        return ContingencyStateMachine(owner_id, self._contingency_store)

    def fiscal_for(self, owner_id: str) -> FiscalClient:
        if self._fiscal_transport is None:
            raise MissingConfigError("fiscal_gateway_url")
        return FiscalClient(
            owner_id,
            self._fiscal_transport,
            self.contingency_for(owner_id),
            retry=self.retry,
            cancellation_window=timedelta(hours=self.settings.fiscal_cancellation_window_hours),
            uf=self.settings.fiscal_uf,
        )

    # ── Health / lifecycle ───────────────────────────────────────

    async def health(self, owner_id: str | None = None) -> HealthReport:
        """Probe every configured integration; owner-scoped ones need ``owner_id``."""
        probes: dict[str, Callable[[], Awaitable[IntegrationHealth]]] = {
            "registry": self.registry.health,
        }
        if self.groupware is not None:
            probes["groupware"] = self.groupware.health
        if owner_id is not None:
            if self._fiscal_transport is not None:
                probes["fiscal"] = self.fiscal_for(owner_id).health
            if self.banking is not None:
                banking = self.banking

                async def _banking_health() -> IntegrationHealth:
                    return await banking.health(owner_id)

                probes["banking"] = _banking_health
        return await run_health_checks(probes, service="tether")

    async def aclose(self) -> None:
        await self.cache.aclose()
        for transport in self._transports:
            await transport.aclose()
        if self._owns_contingency_store and isinstance(self._contingency_store, SqliteContingencyStore):
            self._contingency_store.close_connection()
        logger.debug("hub.closed", transports=len(self._transports))

    async def __aenter__(self) -> IntegrationHub:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


__all__ = ["IntegrationHub"]
