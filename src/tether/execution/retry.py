"""Retry policy with exponential backoff, shared by every integration.

One policy, parameterised by an error classifier, replaces per-client retry
loops. Only transient failures (rate limits, 5xx, network errors, timeouts)
are retried; everything else is raised on the first attempt. When the
attempt ceiling is reached the last transient error is wrapped in
:class:`~tether.core.errors.IntegrationUnavailable`.

Example:
    >>> from tether.execution.retry import ExponentialBackoff, RetryPolicy
    >>>
    >>> backoff = ExponentialBackoff(base_delay=1.0, max_delay=30.0)
    >>> [backoff.next_delay(i) for i in range(6)]
    [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]
    >>> policy = RetryPolicy(max_attempts=3, backoff=backoff)
    >>> payload = await policy.run(lambda: transport.get("/produto/1"))
"""

from __future__ import annotations

import asyncio
import functools
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

from tether.core.errors import IntegrationUnavailable, TetherError, is_transient
from tether.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

ErrorClassifier = Callable[[BaseException], bool]
RetryHook = Callable[[int, BaseException, float], None]
Sleep = Callable[[float], Awaitable[None]]


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


@dataclass
class ExponentialBackoff:
    """Exponential backoff, optionally jittered.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) [+ jitter]

    ``attempt`` is the zero-based retry index: the wait before the second
    attempt uses ``attempt=0``.
    """

    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: bool = False
    jitter_range: float = 0.25

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier**attempt), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))
        return delay


@dataclass
class RetryContext:
    """State of one :meth:`RetryPolicy.run` call.

    A fresh context is created per call, so attempt counters never leak
    between operations.
    """

    max_attempts: int
    attempt: int = field(default=0, init=False)
    last_error: BaseException | None = field(default=None, init=False)
    started_at: datetime = field(default_factory=utcnow, init=False)
    errors: list[tuple[int, BaseException, datetime]] = field(default_factory=list, init=False)

    def record_failure(self, error: BaseException) -> None:
        self.errors.append((self.attempt, error, utcnow()))
        self.last_error = error

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    @property
    def elapsed_seconds(self) -> float:
        return (utcnow() - self.started_at).total_seconds()


class RetryPolicy:
    """Retry transient failures of an async operation.

    Args:
        max_attempts: Total attempts including the first (>= 1)
        backoff: Delay strategy between attempts
        classifier: Returns True for errors worth retrying
        sleep: Awaitable sleep, injectable for tests
        on_retry: Called before each wait with (attempt, error, delay)
    """

    def __init__(
        self,
        max_attempts: int = 3,
        *,
        backoff: ExponentialBackoff | None = None,
        classifier: ErrorClassifier = is_transient,
        sleep: Sleep = asyncio.sleep,
        on_retry: RetryHook | None = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.backoff = backoff or ExponentialBackoff()
        self.classifier = classifier
        self._sleep = sleep
        self.on_retry = on_retry

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> RetryPolicy:
        return cls(
            max_attempts=settings.retry_max_attempts,
            backoff=ExponentialBackoff(
                base_delay=settings.retry_base_delay,
                max_delay=settings.retry_max_delay,
            ),
            **kwargs,
        )

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: int | None = None,
    ) -> T:
        """Await ``operation()`` until it succeeds, fails terminally or runs out of attempts.

        Raises:
            IntegrationUnavailable: transient failures outlasted the ceiling
            Exception: any non-transient error, unchanged, on first occurrence
        """
        ctx = RetryContext(max_attempts=max_attempts or self.max_attempts)

        while True:
            ctx.attempt += 1
            try:
                return await operation()
            except Exception as e:
                if not self.classifier(e):
                    raise
                ctx.record_failure(e)
                if ctx.exhausted:
                    raise self._give_up(ctx) from e

                delay = self.backoff.next_delay(ctx.attempt - 1)
                logger.debug(
                    "retry.scheduled",
                    attempt=ctx.attempt,
                    max_attempts=ctx.max_attempts,
                    delay=delay,
                    error=type(e).__name__,
                )
                if self.on_retry:
                    self.on_retry(ctx.attempt, e, delay)
                await self._sleep(delay)

    def _give_up(self, ctx: RetryContext) -> IntegrationUnavailable:
        last = ctx.last_error
        context = last.context.to_dict() if isinstance(last, TetherError) else {}
        logger.warning(
            "retry.exhausted",
            attempts=ctx.attempt,
            elapsed_s=round(ctx.elapsed_seconds, 3),
            error_type=type(last).__name__,
            error=str(last),
            **context,
        )
        error = IntegrationUnavailable(
            f"Integration unavailable after {ctx.attempt} attempts",
            last_error=last,
            attempts=ctx.attempt,
        )
        if isinstance(last, TetherError):
            error.with_context(
                provider=last.context.provider,
                operation=last.context.operation,
                method=last.context.method,
                url=last.context.url,
                http_status=last.context.http_status,
            )
        return error


def with_retry(
    policy: RetryPolicy | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator form of :meth:`RetryPolicy.run` for coroutine functions.

    Example:
        >>> @with_retry(RetryPolicy(max_attempts=2))
        ... async def status(self):
        ...     return await self._transport.get("/status")
    """
    if policy is None:
        policy = RetryPolicy()

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await policy.run(lambda: func(*args, **kwargs))

        return wrapper

    return decorator


__all__ = [
    "ExponentialBackoff",
    "RetryContext",
    "RetryPolicy",
    "with_retry",
]
