"""
Structured error types for the tether integration layer.

Every failure that crosses an integration boundary is a typed
:class:`TetherError` carrying the metadata the retry policy, the fallback
orchestrator and the HTTP surface need to decide what to do next.

Manifesto:
    - **Typed taxonomy:** caller mistakes, transient faults, auth expiry and
      clean negatives are different things and are raised as different types
    - **Explicit retry semantics:** each error knows whether it is retryable
    - **Rich context:** provider, endpoint and HTTP status travel with the
      error so the log line after exhaustion is complete
    - **Error chaining:** the underlying ``httpx`` exception is kept as cause

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                         TetherError                              │
        │      (category, retryable, retry_after, context, cause)         │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  TransientError            ClientError         AuthError         │
        │  (retryable=True)          (4xx, terminal)     (AUTH)            │
        │       │                                            │             │
        │  ServerError   RateLimited                     AuthExpired       │
        │  NetworkError  Timeout                                           │
        │                                                                  │
        │  IntegrationUnavailable    NotFound            ValidationError   │
        │  (retries exhausted)       (clean negative)        │             │
        │                                             CancellationWindow   │
        │  ConfigError               WebhookSignatureError    Expired      │
        │  MissingConfigError                                              │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = ServerError("authority returned 503", http_status=503)
    >>> error.retryable
    True
    >>> error.with_context(provider="registry.public", url="https://x/produto/1")
    ServerError('authority returned 503', category=NETWORK)
    >>> is_transient(ClientError("bad request", http_status=400))
    False

Guardrails:
    ❌ DON'T: retry a ClientError, the request itself is wrong
    ✅ DO: let the retry policy classify with :func:`is_transient`

    ❌ DON'T: put token values in ``ErrorContext.metadata``
    ✅ DO: log provider and endpoint only

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context, tether
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    NETWORK = "NETWORK"           # Connection, timeout, 5xx, 429
    CLIENT = "CLIENT"             # 4xx caused by the request itself
    SOURCE = "SOURCE"             # Authority answered, but with no usable data
    VALIDATION = "VALIDATION"     # Rejected locally before any network call
    CONFIG = "CONFIG"             # Missing or invalid settings
    AUTH = "AUTH"                 # Credential expired, revoked or missing
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only non-None fields are serialised by :meth:`to_dict`. Never store
    secrets here; the context is logged verbatim.

    Attributes:
        provider: Logical provider tag (``"registry.accelerator"``, ``"banking"``)
        operation: Logical operation name (``"lookup"``, ``"send_mail"``)
        method: HTTP method of the failing request
        url: URL that was being accessed
        http_status: HTTP status code, when a response was received
        attempts: Number of attempts made before the error surfaced
        metadata: Additional key-value pairs
    """

    provider: str | None = None
    operation: str | None = None
    method: str | None = None
    url: str | None = None
    http_status: int | None = None
    attempts: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["provider", "operation", "method", "url", "http_status", "attempts"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class TetherError(Exception):
    """
    Base exception for all integration-layer errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can be
    overridden per instance.

    Examples:
        >>> error = TetherError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> TetherError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ServerError("Failed").with_context(
                provider="fiscal",
                url="https://gateway/nfe",
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# HTTP-LEVEL ERRORS
# =============================================================================


class _HttpStatusMixin:
    """Stores the HTTP status and response body of a failed request."""

    http_status: int | None
    body: str | None

    def _set_http(self, http_status: int | None, body: str | None) -> None:
        self.http_status = http_status
        self.body = body
        if http_status is not None:
            self.context.http_status = http_status  # type: ignore[attr-defined]


class ClientError(_HttpStatusMixin, TetherError):
    """
    The authority rejected the request (4xx other than 429).

    Terminal: the same request will fail again, so it is never retried.
    """

    default_category = ErrorCategory.CLIENT
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        http_status: int | None = None,
        body: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self._set_http(http_status, body)


class TransientError(TetherError):
    """
    Temporary error that may succeed on retry.

    Raised directly only by callers that need a generic transient signal;
    the transport raises one of the concrete subclasses.
    """

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class ServerError(_HttpStatusMixin, TransientError):
    """The authority failed (5xx)."""

    def __init__(
        self,
        message: str,
        *,
        http_status: int | None = None,
        body: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self._set_http(http_status, body)


class RateLimited(_HttpStatusMixin, TransientError):
    """The authority throttled the caller (429)."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: float | None = None,
        body: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, retry_after=retry_after, **kwargs)
        self._set_http(429, body)


class NetworkError(TransientError):
    """Connection-level failure: DNS, refused, reset, protocol error."""


class Timeout(TransientError):
    """The request exceeded its deadline."""

    def __init__(self, message: str, *, timeout: float | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.timeout = timeout


class IntegrationUnavailable(TetherError):
    """
    Transient failures persisted past the retry ceiling.

    This is the only transient-family error callers ever see. It is not
    itself retryable: the policy already gave up. ``last_error`` is the
    final transient error, also chained as ``__cause__``.
    """

    default_category = ErrorCategory.NETWORK
    default_retryable = False

    def __init__(
        self,
        message: str = "Integration unavailable",
        *,
        last_error: BaseException | None = None,
        attempts: int | None = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("cause", last_error)
        super().__init__(message, **kwargs)
        self.last_error = last_error
        self.attempts = attempts
        self.exhausted = True
        if attempts is not None:
            self.context.attempts = attempts


# =============================================================================
# SOURCE / VALIDATION ERRORS
# =============================================================================


class NotFound(TetherError):
    """The authority answered cleanly that the record does not exist."""

    default_category = ErrorCategory.SOURCE
    default_retryable = False


class ValidationError(TetherError):
    """
    Input rejected locally, before any network call.

    Never retryable - the input must be fixed.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


class CancellationWindowExpired(ValidationError):
    """A fiscal document is past the authority's cancellation window."""


# =============================================================================
# CONFIGURATION / AUTH ERRORS
# =============================================================================


class ConfigError(TetherError):
    """Configuration error. Never retryable."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class MissingConfigError(ConfigError):
    """Required configuration is missing."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"Missing required configuration: {key}")


class AuthError(TetherError):
    """Authentication or authorization error."""

    default_category = ErrorCategory.AUTH
    default_retryable = False


class AuthExpired(AuthError):
    """
    No usable credential and refresh is impossible.

    The caller must restart the authorization flow (authorize URL, then code
    exchange). Retrying the same call cannot help.
    """


class WebhookSignatureError(AuthError):
    """An inbound webhook failed signature validation."""


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_transient(error: BaseException) -> bool:
    """Default retry classifier: only rate limits, 5xx, network and timeouts."""
    if isinstance(error, TetherError):
        return error.retryable and isinstance(error, TransientError)
    return False


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "TetherError",
    # HTTP / transient
    "ClientError",
    "TransientError",
    "ServerError",
    "RateLimited",
    "NetworkError",
    "Timeout",
    "IntegrationUnavailable",
    # Source / validation
    "NotFound",
    "ValidationError",
    "CancellationWindowExpired",
    # Config / auth
    "ConfigError",
    "MissingConfigError",
    "AuthError",
    "AuthExpired",
    "WebhookSignatureError",
    # Utilities
    "is_transient",
]
