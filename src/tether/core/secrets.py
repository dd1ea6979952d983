"""Secret wrapper for token and key material.

Access tokens, refresh tokens and aggregator API keys live in memory for the
lifetime of a client. Wrapping them in :class:`SecretValue` keeps them out of
``repr()`` output, structlog event dicts and exception messages.
"""

from __future__ import annotations

from pydantic import SecretStr


class SecretValue:
    """Wrapper for secret values that prevents accidental logging.

    The string representation shows ``[REDACTED]`` instead of the value.
    Use ``.get_secret()`` to access the actual value.

    Example:
        >>> token = SecretValue("eyJ0eXAi...")
        >>> print(token)            # [REDACTED]
        >>> token.get_secret()      # "eyJ0eXAi..."
    """

    __slots__ = ("_value",)

    def __init__(self, value: str):
        self._value = value

    def get_secret(self) -> str:
        """Get the actual secret value."""
        return self._value

    def __str__(self) -> str:
        return "[REDACTED]"

    def __repr__(self) -> str:
        return "SecretValue('[REDACTED]')"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecretValue):
            return self._value == other._value
        return False

    def __hash__(self) -> int:
        return hash(self._value)

    def __bool__(self) -> bool:
        return bool(self._value)


def to_secret(value: str | SecretStr | SecretValue | None) -> SecretValue | None:
    """Normalise a plain string, pydantic ``SecretStr`` or ``SecretValue``."""
    if value is None:
        return None
    if isinstance(value, SecretValue):
        return value
    if isinstance(value, SecretStr):
        raw = value.get_secret_value()
        return SecretValue(raw) if raw else None
    return SecretValue(value) if value else None


def reveal(value: SecretValue | None) -> str | None:
    """Return the raw secret, or None."""
    return value.get_secret() if value is not None else None


__all__ = ["SecretValue", "to_secret", "reveal"]
