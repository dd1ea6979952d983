"""Canonical registry lookup result and the provider interface.

Registry backends return different schemas. Each backend is a
:class:`RegistryProvider` variant whose ``fetch`` already produces the one
canonical :class:`ProviderResult`, so the orchestrator never branches on
provider type.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, replace
from datetime import date
from enum import Enum
from typing import Any, Protocol, runtime_checkable

IDENTIFIER_LENGTH = 13

_NON_DIGITS = re.compile(r"\D")
_IDENTIFIER = re.compile(rf"^\d{{{IDENTIFIER_LENGTH}}}$")


class Situation(str, Enum):
    """Registration situation as reported by the authority."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    NOT_FOUND = "NOT_FOUND"

    @classmethod
    def parse(cls, raw: str | None) -> Situation:
        """Map an authority's situation label to the enum.

        Accepts both the authority's Portuguese labels and the enum names.
        Unknown or missing labels map to ``NOT_FOUND``.
        """
        if not raw:
            return cls.NOT_FOUND
        key = raw.strip().upper().replace(" ", "_")
        return _SITUATION_ALIASES.get(key, cls.NOT_FOUND)


_SITUATION_ALIASES = {
    "ATIVO": Situation.ACTIVE,
    "VALIDO": Situation.ACTIVE,
    "INATIVO": Situation.INACTIVE,
    "SUSPENSO": Situation.INACTIVE,
    "CANCELADO": Situation.CANCELLED,
    "VENCIDO": Situation.EXPIRED,
    "CADUCO": Situation.EXPIRED,
    "NAO_ENCONTRADO": Situation.NOT_FOUND,
    **{member.value: member for member in Situation},
}


class RiskClass(str, Enum):
    I = "I"  # noqa: E741
    II = "II"
    III = "III"
    IV = "IV"

    @classmethod
    def parse(cls, raw: str | None) -> RiskClass | None:
        if not raw:
            return None
        try:
            return cls(raw.strip().upper())
        except ValueError:
            return None


@dataclass(frozen=True)
class ProviderResult:
    """Normalised outcome of a registry lookup. Immutable; safe to cache."""

    identifier: str
    valid: bool
    situation: Situation
    provider: str
    product_name: str | None = None
    holder_name: str | None = None
    expires_on: date | None = None
    risk_class: RiskClass | None = None
    regulatory_category: str | None = None
    purpose: str | None = None
    presentation: str | None = None

    @classmethod
    def not_found(cls, identifier: str, provider: str = "none") -> ProviderResult:
        return cls(identifier=identifier, valid=False, situation=Situation.NOT_FOUND, provider=provider)

    def with_provider(self, provider: str) -> ProviderResult:
        return replace(self, provider=provider)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["situation"] = self.situation.value
        data["risk_class"] = self.risk_class.value if self.risk_class else None
        data["expires_on"] = self.expires_on.isoformat() if self.expires_on else None
        return data


@runtime_checkable
class RegistryProvider(Protocol):
    """One registry backend.

    ``fetch`` returns a canonical result, or ``None`` when the backend
    answered cleanly that it has no data. Transport failures are raised,
    never turned into ``None``.
    """

    name: str

    @property
    def enabled(self) -> bool: ...

    async def fetch(self, identifier: str) -> ProviderResult | None: ...


def normalize_identifier(raw: str) -> str | None:
    """Strip non-digits and left-pad to 13 digits.

    Returns None when the input cannot be a registry number (no digits, or
    more than 13 of them).
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if not digits:
        return None
    padded = digits.zfill(IDENTIFIER_LENGTH)
    return padded if _IDENTIFIER.match(padded) else None


def parse_date(raw: str | None) -> date | None:
    """Parse ``YYYY-MM-DD`` (optionally with a time part) or ``DD/MM/YYYY``."""
    if not raw:
        return None
    raw = raw.strip()
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        pass
    parts = raw[:10].split("/")
    if len(parts) == 3:
        try:
            day, month, year = (int(p) for p in parts)
            return date(year, month, day)
        except ValueError:
            return None
    return None


__all__ = [
    "IDENTIFIER_LENGTH",
    "Situation",
    "RiskClass",
    "ProviderResult",
    "RegistryProvider",
    "normalize_identifier",
    "parse_date",
]
