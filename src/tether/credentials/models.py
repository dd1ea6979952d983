"""Credential records and the collaborator protocols around them.

``Credential`` is what the lifecycle manager guards. ``TokenGrant`` is what
a broker hands back. ``CredentialStore`` persists credentials (encryption is
the store's business) and ``CredentialBroker`` talks to the server-side
function that holds the OAuth client secret.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol, runtime_checkable

from tether.core.secrets import SecretValue, to_secret


@dataclass(frozen=True)
class Credential:
    """An access token with its expiry, optional refresh token and scopes."""

    access_token: SecretValue
    expires_at: datetime
    refresh_token: SecretValue | None = None
    scopes: tuple[str, ...] = ()
    account_id: str = ""

    def __post_init__(self) -> None:
        if self.expires_at.tzinfo is None:
            raise ValueError("expires_at must be timezone-aware")

    def needs_refresh(self, now: datetime, buffer: timedelta) -> bool:
        """True once ``now`` has reached ``expires_at - buffer``."""
        return now >= self.expires_at - buffer

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def with_refresh_token(self, refresh_token: SecretValue | None) -> Credential:
        return replace(self, refresh_token=refresh_token)

    def to_dict(self, *, reveal: bool = False) -> dict[str, Any]:
        """Serialise; token values are redacted unless ``reveal`` is set."""

        def _show(value: SecretValue | None) -> str | None:
            if value is None:
                return None
            return value.get_secret() if reveal else str(value)

        return {
            "access_token": _show(self.access_token),
            "refresh_token": _show(self.refresh_token),
            "expires_at": self.expires_at.isoformat(),
            "scopes": list(self.scopes),
            "account_id": self.account_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Credential:
        expires_at = data["expires_at"]
        if isinstance(expires_at, str):
            expires_at = datetime.fromisoformat(expires_at)
        return cls(
            access_token=SecretValue(data["access_token"]),
            refresh_token=to_secret(data.get("refresh_token")),
            expires_at=expires_at,
            scopes=tuple(data.get("scopes") or ()),
            account_id=data.get("account_id") or "",
        )


@dataclass(frozen=True)
class TokenGrant:
    """Token material returned by a broker."""

    access_token: SecretValue
    expires_in: float
    refresh_token: SecretValue | None = None
    account_id: str | None = None
    scopes: tuple[str, ...] = field(default=())

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> TokenGrant:
        """Build from a broker JSON body (``access_token``, ``expires_in``, ...)."""
        token = payload.get("access_token") or payload.get("accessToken")
        if not token:
            raise ValueError("broker response has no access token")
        expires_in = payload.get("expires_in", payload.get("expiresIn", 3600))
        return cls(
            access_token=SecretValue(token),
            expires_in=float(expires_in),
            refresh_token=to_secret(payload.get("refresh_token") or payload.get("refreshToken")),
            account_id=payload.get("account_id") or payload.get("accountId"),
            scopes=tuple(payload.get("scopes") or ()),
        )

    def to_credential(
        self,
        now: datetime,
        *,
        scopes: tuple[str, ...] = (),
        account_id: str = "",
        previous_refresh_token: SecretValue | None = None,
    ) -> Credential:
        """Materialise a credential, keeping the previous refresh token if none was issued."""
        return Credential(
            access_token=self.access_token,
            refresh_token=self.refresh_token or previous_refresh_token,
            expires_at=now + timedelta(seconds=self.expires_in),
            scopes=self.scopes or scopes,
            account_id=self.account_id or account_id,
        )


@runtime_checkable
class CredentialStore(Protocol):
    """Secure persistence for one owner's credential."""

    async def save(self, credential: Credential) -> None: ...

    async def get(self) -> Credential | None: ...

    async def revoke(self) -> None: ...


@runtime_checkable
class CredentialBroker(Protocol):
    """Server-side token endpoint holding the client secret."""

    async def exchange_code(self, code: str, redirect_uri: str | None, scopes: list[str]) -> TokenGrant: ...

    async def refresh(self, refresh_token: SecretValue) -> TokenGrant: ...

    async def revoke(self, account_id: str) -> None: ...


class InMemoryCredentialStore:
    """Non-persistent store for tests and single-process use."""

    def __init__(self, credential: Credential | None = None):
        self._credential = credential
        self.saves = 0

    async def save(self, credential: Credential) -> None:
        self._credential = credential
        self.saves += 1

    async def get(self) -> Credential | None:
        return self._credential

    async def revoke(self) -> None:
        self._credential = None


def utcnow() -> datetime:
    return datetime.now(UTC)


__all__ = [
    "Credential",
    "TokenGrant",
    "CredentialStore",
    "CredentialBroker",
    "InMemoryCredentialStore",
    "utcnow",
]
