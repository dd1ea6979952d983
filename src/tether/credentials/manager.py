"""
Credential lifecycle manager.

Manifesto:
    Every credential-gated call starts with ``await manager.ensure_valid()``.
    That one call either leaves a usable access token in memory or raises
    :class:`~tether.core.errors.AuthExpired`, which means "send the user
    through the authorize URL again". Nothing else in the integration layer
    knows how tokens are refreshed.

Architecture:
    ::

        ensure_valid()
          ├─ current = memory or store.get()
          ├─ none ─────────────────────────────► AuthExpired
          ├─ now < expires_at - buffer ────────► return
          └─ refresh()
               ├─ no refresh token ────────────► AuthExpired
               ├─ broker.refresh(refresh_token)
               │     ├─ rejected ──────────────► AuthExpired
               │     └─ transient, exhausted ──► IntegrationUnavailable
               ├─ keep old refresh token if none issued
               ├─ store.save(new)
               └─ memory = new

        Re-authorization: authorization_url(scopes, state) → user consents
                          → exchange_code(code, scopes)

    Concurrent callers may both refresh (tolerated: the later credential
    wins). ``single_flight=True`` serialises refreshes per account id.

Guardrails:
    ❌ DON'T: log ``credential.access_token.get_secret()``
    ✅ DO: log ``account_id`` and ``expires_at``

Tags:
    oauth, credentials, refresh, single-flight, tether
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from urllib.parse import urlencode

from tether.core.errors import AuthExpired, MissingConfigError
from tether.core.logging import get_logger
from tether.credentials.models import Credential, CredentialBroker, CredentialStore, utcnow

logger = get_logger(__name__)

DEFAULT_REFRESH_BUFFER = timedelta(minutes=5)
DEFAULT_AUTHORITY = "https://login.microsoftonline.com"


@dataclass(frozen=True)
class OAuthConfig:
    """Public OAuth client settings used to build the authorize URL."""

    client_id: str
    redirect_uri: str | None = None
    tenant: str | None = None
    authority: str = DEFAULT_AUTHORITY

    def authorization_url(self, scopes: Sequence[str], state: str | None = None) -> str:
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri or "",
            "scope": " ".join(scopes),
            "response_mode": "query",
            "prompt": "select_account",
        }
        if state:
            params["state"] = state
        tenant = self.tenant or "common"
        return f"{self.authority.rstrip('/')}/{tenant}/oauth2/v2.0/authorize?{urlencode(params)}"


class SingleFlightGuard:
    """One ``asyncio.Lock`` per account id, shareable between managers."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock


class CredentialManager:
    """Guarantees a usable credential before each dependent call.

    Args:
        store: Persistence for the owner's credential
        broker: Server-side token endpoint
        oauth: Client settings for the authorize URL (optional)
        refresh_buffer: Refresh when this close to expiry
        single_flight: Serialise refreshes per account id
        guard: Shared single-flight guard (one is created if omitted)
        clock: Returns an aware UTC ``datetime``
        name: Integration name for log lines
    """

    def __init__(
        self,
        store: CredentialStore,
        broker: CredentialBroker,
        *,
        oauth: OAuthConfig | None = None,
        refresh_buffer: timedelta = DEFAULT_REFRESH_BUFFER,
        single_flight: bool = False,
        guard: SingleFlightGuard | None = None,
        clock: Callable[[], datetime] = utcnow,
        name: str = "credentials",
    ):
        self.store = store
        self.broker = broker
        self.oauth = oauth
        self.refresh_buffer = refresh_buffer
        self.single_flight = single_flight
        self._guard = guard or SingleFlightGuard()
        self._clock = clock
        self.name = name
        self._credential: Credential | None = None
        self.refresh_count = 0

    @property
    def current(self) -> Credential | None:
        """The in-memory credential, if one has been loaded."""
        return self._credential

    async def load(self) -> Credential | None:
        """Return the in-memory credential, falling back to the store."""
        if self._credential is None:
            self._credential = await self.store.get()
        return self._credential

    # ── Validity ─────────────────────────────────────────────────

    async def ensure_valid(self) -> None:
        """Leave a usable credential in memory or raise ``AuthExpired``."""
        credential = await self.load()
        if credential is None:
            raise AuthExpired(f"no {self.name} credential; authorization required").with_context(
                provider=self.name
            )
        if not credential.needs_refresh(self._clock(), self.refresh_buffer):
            return

        if not self.single_flight:
            await self.refresh()
            return

        async with self._guard.lock_for(credential.account_id or self.name):
            latest = self._credential or credential
            if latest.needs_refresh(self._clock(), self.refresh_buffer):
                await self.refresh()

    async def refresh(self) -> Credential:
        """Ask the broker for a new credential and persist it."""
        credential = await self.load()
        if credential is None or credential.refresh_token is None:
            logger.warning("credential.refresh_impossible", integration=self.name)
            raise AuthExpired(
                f"{self.name} credential cannot be refreshed; authorization required"
            ).with_context(provider=self.name)

        logger.info(
            "credential.refresh",
            integration=self.name,
            account_id=credential.account_id,
            expires_at=credential.expires_at.isoformat(),
        )
        grant = await self.broker.refresh(credential.refresh_token)
        refreshed = grant.to_credential(
            self._clock(),
            scopes=credential.scopes,
            account_id=credential.account_id,
            previous_refresh_token=credential.refresh_token,
        )
        await self.store.save(refreshed)
        self._credential = refreshed
        self.refresh_count += 1
        logger.info(
            "credential.refreshed",
            integration=self.name,
            account_id=refreshed.account_id,
            expires_at=refreshed.expires_at.isoformat(),
        )
        return refreshed

    async def access_token(self) -> str:
        await self.ensure_valid()
        if self._credential is None:
            raise AuthExpired(f"no {self.name} credential; authorization required").with_context(
                provider=self.name
            )
        return self._credential.access_token.get_secret()

    async def authorization_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {await self.access_token()}"}

    # ── Re-authorization ─────────────────────────────────────────

    def authorization_url(self, scopes: Sequence[str], state: str | None = None) -> str:
        if self.oauth is None or not self.oauth.client_id:
            raise MissingConfigError(f"{self.name}.client_id")
        return self.oauth.authorization_url(scopes, state)

    async def exchange_code(self, code: str, scopes: Sequence[str]) -> Credential:
        """Trade an authorization code for a fresh credential and persist it."""
        redirect_uri = self.oauth.redirect_uri if self.oauth else None
        grant = await self.broker.exchange_code(code, redirect_uri, list(scopes))
        credential = grant.to_credential(self._clock(), scopes=tuple(scopes))
        await self.store.save(credential)
        self._credential = credential
        logger.info(
            "credential.authorized",
            integration=self.name,
            account_id=credential.account_id,
            scopes=list(credential.scopes),
        )
        return credential

    async def revoke(self) -> None:
        """Revoke at the broker, clear the store and forget the in-memory copy.

        Local state is cleared even when the broker call fails; the broker
        error is then re-raised.
        """
        credential = await self.load()
        try:
            if credential is not None:
                await self.broker.revoke(credential.account_id)
        finally:
            await self.store.revoke()
            self._credential = None
        logger.info("credential.revoked", integration=self.name)


__all__ = [
    "DEFAULT_REFRESH_BUFFER",
    "OAuthConfig",
    "SingleFlightGuard",
    "CredentialManager",
]
